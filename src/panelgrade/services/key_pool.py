"""Per-request credential assignment for the three raters.

Rater A uses credential[0], B credential[1], C credential[2]. With fewer than
three keys configured the first key is repeated, so a single-key deployment
still works and only shares that key's rate limit.
"""

from panelgrade.config import Settings
from panelgrade.exceptions import MissingCredentialError
from panelgrade.schemas.evaluation import EvaluatorId

POOL_SIZE = 3

_EVALUATOR_SLOTS = {
    EvaluatorId.A: 0,
    EvaluatorId.B: 1,
    EvaluatorId.C: 2,
}


class KeyRotationPool:
    def __init__(self, credentials: list[str]) -> None:
        keys = [c for c in credentials if c][:POOL_SIZE]
        if not keys:
            raise MissingCredentialError("API 키가 설정되지 않았습니다.")
        while len(keys) < POOL_SIZE:
            keys.append(keys[0])
        self._keys = tuple(keys)

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyRotationPool":
        return cls(settings.api_keys)

    def get_credential(self, index: int) -> str:
        return self._keys[index % POOL_SIZE]

    def for_evaluator(self, evaluator_id: EvaluatorId) -> str:
        return self._keys[_EVALUATOR_SLOTS[evaluator_id]]

    @property
    def primary(self) -> str:
        """Credential used for the single-call stages."""
        return self._keys[0]

    def __len__(self) -> int:
        return POOL_SIZE

    def __repr__(self) -> str:
        # never print the keys themselves
        distinct = len(set(self._keys))
        return f"KeyRotationPool(size={POOL_SIZE}, distinct={distinct})"
