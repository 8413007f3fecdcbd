from __future__ import annotations

import random
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


class RetryPolicy(BaseModel):
    """Политика повторного запуска шага после ошибки"""

    model_config = ConfigDict(frozen=True)

    # сколько раз можно перезапустить шаг после первой попытки
    limit: int = Field(default=0, ge=0)
    # базовая задержка перед повтором в секундах
    interval_sec: float = Field(default=0.0, ge=0.0)
    # коэффициент роста задержки (экспонента), 1.0 = постоянная задержка
    factor: float = Field(default=1.0, ge=1.0)
    # максимальная задержка в секундах
    max_sec: float = Field(default=300.0, ge=0.0)
    # добавка шума (джиттер) к задержке в секундах
    jitter_sec: float = Field(default=0.0, ge=0.0)


@dataclass(slots=True)
class BackoffState:
    """Состояние повторов одного шага"""

    policy: RetryPolicy
    # номер текущего повтора (0 = первая попытка)
    attempt: int = 0

    def can_retry(self, retry_count: int) -> bool:
        return retry_count < self.policy.limit

    def next_delay_with_jitter(self) -> float:
        """Вычисляет задержку перед следующей попыткой"""

        base = min(
            self.policy.max_sec,
            self.policy.interval_sec * (self.policy.factor ** max(self.attempt - 1, 0)),
        )
        jitter = random.uniform(-self.policy.jitter_sec, self.policy.jitter_sec)
        # не дает задержке быть меньше нуля
        return max(0.0, base + jitter)

    def register_retry(self) -> None:
        self.attempt += 1
