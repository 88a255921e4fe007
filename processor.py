# processor.py
import logging

from cache import AccessKind

logger = logging.getLogger(__name__)

NUM_REGS = 8

ADD = 0
NAND = 1
LW = 2
SW = 3
BEQ = 4
JALR = 5
HALT = 6
NOOP = 7

NOOP_INSTRUCTION = 0x1C00000


class SimulationError(RuntimeError):
    pass


def opcode(instr):
    return (instr >> 22) & 0x7


def field0(instr):
    return (instr >> 19) & 0x7


def field1(instr):
    return (instr >> 16) & 0x7


def field2(instr):
    return instr & 0xFFFF


def sign_extend(num):
    """Convert a 16-bit field into a signed integer."""
    if num & (1 << 15):
        num -= 1 << 16
    return num


def to_word(value):
    """Wrap to a 32-bit signed machine word."""
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & (1 << 31) else value


def encode(op, reg_a=0, reg_b=0, field=0):
    return (op << 22) | (reg_a << 19) | (reg_b << 16) | (field & 0xFFFF)


class Processor:
    """
    Eight-register machine whose every fetch, load and store goes through
    the cache. The cache is flushed when the machine halts.
    """

    def __init__(self, cache):
        self.cache = cache
        self.pc = 0
        self.reg = [0] * NUM_REGS
        self.instructions = 0
        self.halted = False

    def step(self):
        """Fetch and execute one instruction. Returns False once halted."""
        instr = self.cache.access(self.pc, AccessKind.FETCH)
        self.instructions += 1
        op = opcode(instr)

        if op == HALT:
            self.halted = True
            return False

        self.pc += 1
        reg_a = self.reg[field0(instr)]
        reg_b = self.reg[field1(instr)]
        offset = sign_extend(field2(instr))

        if op == ADD:
            self.reg[field2(instr) & 0x7] = to_word(reg_a + reg_b)
        elif op == NAND:
            self.reg[field2(instr) & 0x7] = to_word(~(reg_a & reg_b))
        elif op == LW:
            self.reg[field0(instr)] = self.cache.access(reg_b + offset, AccessKind.LOAD)
        elif op == SW:
            self.cache.access(reg_b + offset, AccessKind.STORE, reg_a)
        elif op == BEQ:
            if reg_a == reg_b:
                self.pc += offset
        elif op == JALR:
            # regB is read after the link write, so JALR r r falls through to pc+1
            self.reg[field0(instr)] = self.pc
            self.pc = self.reg[field1(instr)]
        # NOOP falls through
        return True

    def run(self, max_instructions=None):
        while self.step():
            if max_instructions is not None and self.instructions >= max_instructions:
                raise SimulationError(f"no halt after {self.instructions} instructions")
        written = self.cache.flush()
        logger.info("machine halted after %d instructions, %d blocks written back", self.instructions, written)
        return self.instructions
