from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Collection, Sequence, TypeVar

from ..program import ShadingLanguageVersion

T = TypeVar("T")


class IdGenerator:
    def __init__(self, start: int = 0) -> None:
        self._next = start

    def fresh_id(self) -> int:
        value = self._next
        self._next += 1
        return value

    def fresh_name(self, prefix: str = "_v") -> str:
        return f"{prefix}{self.fresh_id()}"


class RandomSource:
    def __init__(self, seed: int) -> None:
        self.seed = seed
        self._rng = random.Random(seed)

    def next_int(self, bound: int) -> int:
        if bound <= 0:
            raise ValueError("bound must be positive")
        return self._rng.randrange(bound)

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise ValueError("cannot choose from an empty sequence")
        return items[self.next_int(len(items))]


@dataclass
class ReductionOpportunityContext:
    reduce_everywhere: bool
    version: ShadingLanguageVersion
    random: RandomSource
    id_generator: IdGenerator = field(default_factory=IdGenerator)

    @classmethod
    def create(
        cls, seed: int, version: ShadingLanguageVersion, reduce_everywhere: bool = False
    ) -> "ReductionOpportunityContext":
        return cls(
            reduce_everywhere=reduce_everywhere,
            version=version,
            random=RandomSource(seed),
        )

    def fresh_name(self, taken: Collection[str]) -> str:
        name = self.id_generator.fresh_name()
        while name in taken:
            name = self.id_generator.fresh_name()
        return name
