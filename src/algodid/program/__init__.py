"""On-ledger program: the per-identity upload/ready/delete state machine."""

from algodid.program.did_program import DidProgram
from algodid.program.errors import ProgramError

__all__ = ["DidProgram", "ProgramError"]
