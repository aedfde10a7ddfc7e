"""Response envelope returned to the protocol front end"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class Ok:
    payload: Any
    ok = True

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": True, "result": self.payload}


@dataclass(frozen=True)
class Err:
    code: str
    message: str
    detail: Optional[Dict[str, Any]] = None
    ok = False

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.detail is not None:
            error["detail"] = self.detail
        return {"ok": False, "error": error}


ResponseEnvelope = Union[Ok, Err]
