import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from cache import CacheController, CacheGeometry
from events import EventLog, TransferEvent, TransferKind
from memory import Memory
from processor import (ADD, BEQ, HALT, JALR, LW, NAND, NOOP, NOOP_INSTRUCTION, SW, Processor,
                       SimulationError, encode, opcode, sign_extend, to_word)


def build(program, block=4, sets=2, ways=1, size=64):
    memory = Memory(size)
    memory.load(program)
    return Processor(CacheController(CacheGeometry(block, sets, ways), memory, EventLog(keep_events=True))), memory


class TestDecode(unittest.TestCase):

    def test_fields(self):
        self.assertEqual(encode(LW, 1, 0, 6), 8912902)
        self.assertEqual(opcode(NOOP_INSTRUCTION), NOOP)
        self.assertEqual(sign_extend(0xFFFF), -1)
        self.assertEqual(sign_extend(7), 7)
        self.assertEqual(to_word(2 ** 31), -(2 ** 31))


class TestProcessor(unittest.TestCase):

    def test_load_add_store(self):
        program = [
            encode(LW, 1, 0, 6),
            encode(LW, 2, 0, 7),
            encode(ADD, 1, 2, 3),
            encode(SW, 3, 0, 8),
            encode(HALT),
            0,
            5,
            3,
            0,
        ]
        proc, memory = build(program)
        self.assertEqual(proc.run(), 5)
        self.assertEqual(proc.reg[3], 8)
        self.assertEqual(memory.read_word(8), 8)
        self.assertEqual((proc.cache.stats.hits, proc.cache.stats.misses), (5, 3))

        events = proc.cache.events.events
        self.assertIn(TransferEvent(0, 4, TransferKind.CACHE_TO_NOWHERE), events)
        self.assertEqual(events[-1], TransferEvent(8, 4, TransferKind.CACHE_TO_MEMORY))
        for _, _, line in proc.cache.store:
            self.assertFalse(line.valid)

    def test_branch_loop_and_nand(self):
        # count reg1 down from 3 to 0, then nand
        program = [
            encode(LW, 1, 0, 9),        # reg1 = 3
            encode(LW, 2, 0, 10),       # reg2 = -1
            encode(BEQ, 1, 0, 2),       # done?
            encode(ADD, 1, 2, 1),       # reg1 -= 1
            encode(BEQ, 0, 0, -3),      # back to 2
            encode(NAND, 2, 2, 4),      # reg4 = ~(-1 & -1) = 0
            encode(NAND, 0, 0, 5),      # reg5 = ~0 = -1
            encode(HALT),
            0,
            3,
            -1,
        ]
        proc, _ = build(program, block=1, sets=4, ways=2)
        proc.run()
        self.assertEqual(proc.reg[1], 0)
        self.assertEqual(proc.reg[4], 0)
        self.assertEqual(proc.reg[5], -1)
        self.assertEqual(proc.pc, 7)

    def test_jalr(self):
        program = [
            encode(LW, 2, 0, 5),        # reg2 = 3
            encode(JALR, 7, 2),         # reg7 = 2, jump to 3
            encode(HALT),
            encode(NOOP),
            encode(HALT),
            3,
        ]
        proc, _ = build(program, block=2, sets=2, ways=2)
        proc.run()
        self.assertEqual(proc.reg[7], 2)
        self.assertEqual(proc.pc, 4)

    def test_jalr_with_same_register_falls_through(self):
        program = [
            encode(JALR, 3, 3),         # reg3 = 1, jump to reg3
            encode(HALT),
            encode(BEQ, 0, 0, -3),
        ]
        proc, _ = build(program)
        self.assertEqual(proc.run(max_instructions=10), 2)
        self.assertEqual(proc.reg[3], 1)
        self.assertEqual(proc.pc, 1)

    def test_instruction_budget(self):
        proc, _ = build([encode(BEQ, 0, 0, -1)])
        with self.assertRaises(SimulationError):
            proc.run(max_instructions=50)


if __name__ == '__main__':
    unittest.main()
