"""
Relevance Weights

Coefficients of the weighted sum that ranks search candidates.
"""

from dataclasses import dataclass
from typing import Any, Mapping

FACTORS = ("subject", "body", "frequency", "age", "sticky", "first_message")


def _coefficient(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number > 0 else 0.0


@dataclass(frozen=True)
class WeightFactors:
    """
    Relevance weights for one request.

    relevance = subject * subject_hits
              + body * body_hits
              + frequency * topic_frequency
              + age * recency
              + sticky * is_sticky
              + first_message * is_first_message
    """

    subject: float = 15.0
    body: float = 20.0
    frequency: float = 30.0
    age: float = 25.0
    sticky: float = 5.0
    first_message: float = 10.0

    @classmethod
    def from_settings(
        cls, config: Mapping[str, Any], is_privileged: bool = False
    ) -> "WeightFactors":
        """
        Build weights from a configuration map.

        Missing factors keep their defaults, unparsable or negative values
        count as 0. The frequency factor needs a per-topic aggregate over all
        candidates, so it is only used for privileged requesters.
        """
        defaults = cls()
        values = {
            name: _coefficient(config[name]) if name in config else getattr(defaults, name)
            for name in FACTORS
        }
        if not is_privileged:
            values["frequency"] = 0.0
        return cls(**values)

    @property
    def total(self) -> float:
        return sum(getattr(self, name) for name in FACTORS)
