"""Deterministic random sources for driving the engine draw by draw."""


class ScriptedRandom:
    """Returns the given values from random() in order."""

    def __init__(self, values, cycle=False):
        self._values = list(values)
        self._cycle = cycle
        self._index = 0
        self.calls = 0

    def random(self):
        if self._index >= len(self._values):
            if not self._cycle:
                raise AssertionError(f"scripted draws exhausted after {self.calls} calls")
            self._index = 0
        value = self._values[self._index]
        self._index += 1
        self.calls += 1
        return value


class ConstantRandom(ScriptedRandom):
    """random() always returns the same value."""

    def __init__(self, value):
        super().__init__([value], cycle=True)
