"""
Session context: who is acting and on which board.

Passed explicitly to whatever needs the current user or board id; there is no
module-level session.
"""
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    board_id: Optional[str] = None
    access_token: Optional[str] = None

    def with_board(self, board_id: str) -> "SessionContext":
        return replace(self, board_id=board_id)
