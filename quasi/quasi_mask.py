"""
Data masks: a per-evaluation lookup context that layers a dataset's columns
over an environment chain.

Lookup order is columns, then the `.data` / `.env` pronouns, then the
environment. A column silently shadows an environment binding of the same
name; the pronouns are the explicit way around that.
"""

from typing import Any, List, Mapping, Optional, Sequence
import collections.abc

from quasi.quasi_datatypes import NamedList, UnboundSymbol
from quasi.quasi_env import Frame, Promise

DATA_PRONOUN = ".data"
ENV_PRONOUN = ".env"


# =================================================================
# Dataset adapters
# =================================================================

class MappingData:
    """A dataset held as a mapping of column name to value sequence."""
    def __init__(self, columns: Mapping[str, Sequence[Any]]):
        self.columns = dict(columns)

    def names(self) -> List[str]:
        return list(self.columns.keys())

    def __contains__(self, name: Any) -> bool:
        return name in self.columns

    def column(self, name: str) -> Any:
        try:
            return self.columns[name]
        except KeyError:
            raise UnboundSymbol(name) from None

    def take(self, indices: Sequence[int]) -> 'MappingData':
        """Restricts every column to the given rows (a row or group context)."""
        out = {}
        for name, values in self.columns.items():
            if isinstance(values, (str, bytes)) or not isinstance(values, collections.abc.Sequence):
                out[name] = values
            else:
                out[name] = [values[i] for i in indices]
        return MappingData(out)

    def __len__(self) -> int:
        if not self.columns:
            return 0
        first = next(iter(self.columns.values()))
        if isinstance(first, collections.abc.Sized) and not isinstance(first, (str, bytes)):
            return len(first)
        return 1

    def __repr__(self) -> str:
        return f"<MappingData columns=[{', '.join(self.columns)}]>"


class FrameData:
    """Adapts a dataframe-like object (`.columns` plus `frame[name]`)."""
    def __init__(self, frame: Any):
        self.frame = frame

    def names(self) -> List[str]:
        return [str(c) for c in self.frame.columns]

    def __contains__(self, name: Any) -> bool:
        return name in self.names()

    def column(self, name: str) -> Any:
        if name not in self:
            raise UnboundSymbol(name)
        return self.frame[name]

    def take(self, indices: Sequence[int]) -> 'FrameData':
        return FrameData(self.frame.take(list(indices)))

    def __len__(self) -> int:
        return len(self.frame)

    def __repr__(self) -> str:
        return f"<FrameData columns=[{', '.join(self.names())}]>"


def as_dataset(obj: Any):
    """Wraps obj in the adapter the mask expects (names() and column(name))."""
    if obj is None:
        return MappingData({})
    if isinstance(obj, (MappingData, FrameData)):
        return obj
    if hasattr(obj, 'names') and hasattr(obj, 'column'):
        return obj
    if isinstance(obj, collections.abc.Mapping):
        return MappingData(obj)
    if isinstance(obj, NamedList):
        if any(n is None for n in obj.names):
            raise TypeError("every entry of a list used as a dataset must be named")
        return MappingData(dict(obj.pairs()))
    if hasattr(obj, 'columns') and hasattr(obj, '__getitem__'):
        return FrameData(obj)
    raise TypeError(f"Cannot use {type(obj).__name__} as a dataset")


# =================================================================
# Pronouns
# =================================================================

class DataPronoun:
    """`.data`: resolves against dataset columns only."""
    def __init__(self, data):
        self._data = data

    def __getitem__(self, name: str) -> Any:
        if name not in self._data:
            raise UnboundSymbol(name)
        return self._data.column(name)

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        return self[name]

    def __contains__(self, name: Any) -> bool:
        return name in self._data

    def __repr__(self) -> str:
        return "<pronoun .data>"


class EnvPronoun:
    """`.env`: resolves against the environment chain only, skipping columns."""
    def __init__(self, env: Frame):
        self._env = env

    def __getitem__(self, name: str) -> Any:
        value = self._env.lookup(name)
        if isinstance(value, Promise):
            value = value.force()
        return value

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        return self[name]

    def __contains__(self, name: Any) -> bool:
        return name in self._env

    def __repr__(self) -> str:
        return f"<pronoun .env {self._env.tag}>"


# =================================================================
# The mask
# =================================================================

class DataMask:
    """Columns (innermost) layered over an environment chain (outward).

    Built for one evaluation call and discarded afterwards.
    """
    def __init__(self, data: Any = None, env: Optional[Frame] = None, pronouns: bool = True):
        self.data = as_dataset(data)
        self.env = env if env is not None else Frame()
        self.pronouns = pronouns
        self.data_pronoun = DataPronoun(self.data)
        self.env_pronoun = EnvPronoun(self.env)

    def lookup(self, name: str) -> Any:
        if name in self.data:
            return self.data.column(name)
        if self.pronouns:
            if name == DATA_PRONOUN:
                return self.data_pronoun
            if name == ENV_PRONOUN:
                return self.env_pronoun
        return self.env.lookup(name)

    def lookup_function(self, name: str) -> Any:
        if name in self.data:
            value = self.data.column(name)
            if callable(value):
                return value
        return self.env.lookup_function(name)

    def rebind(self, env: Frame) -> 'DataMask':
        """The same dataset over a different environment chain."""
        if env is self.env:
            return self
        return DataMask(self.data, env, self.pronouns)

    def __contains__(self, name: Any) -> bool:
        if name in self.data:
            return True
        if self.pronouns and name in (DATA_PRONOUN, ENV_PRONOUN):
            return True
        return name in self.env

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"<DataMask columns=[{', '.join(self.data.names())}] env={self.env.tag}>"
