import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from lmm_posterior.posterior_analysis.errors import InvalidParameterError

logger = logging.getLogger(__name__)

Index = Tuple[int, ...]
Source = Union[str, Tuple[str, Index]]

# "beta", "beta[2]", "L_u[1,2]"
LABEL_PATTERN = re.compile(r'^\s*([A-Za-z_][A-Za-z0-9_.]*)\s*(?:\[([^\]]*)\])?\s*$')

# CmdStanPy bookkeeping columns; everything else in a draws table is a parameter
META_COLUMNS = {'chain__': 'chain', 'iter__': 'iteration', 'draw__': 'draw'}


def parse_label(label: str) -> Tuple[str, Index]:
    """
    Split a sampler label into its base name and 1-based index tuple.

    parse_label("L_u[1,2]") -> ("L_u", (1, 2))
    parse_label("sigma_e")  -> ("sigma_e", ())
    """
    match = LABEL_PATTERN.match(str(label))
    if match is None:
        raise InvalidParameterError(f"Malformed parameter label: {label!r}")

    name, raw_index = match.groups()
    if raw_index is None:
        return name, ()

    parts = [part.strip() for part in raw_index.split(',')]
    if not all(part.isdigit() for part in parts):
        raise InvalidParameterError(f"Malformed index in parameter label: {label!r}")

    index = tuple(int(part) for part in parts)
    if any(i < 1 for i in index):
        raise InvalidParameterError(f"Indices are 1-based, got {label!r}")
    return name, index


def format_label(name: str, index: Optional[Index] = None) -> str:
    """Inverse of parse_label"""
    if not index:
        return name
    return f"{name}[{','.join(str(i) for i in index)}]"


@dataclass(frozen=True)
class Draw:
    """One realization of a parameter, tagged with its iteration and chain"""
    parameter: str
    value: Any
    iteration: int
    chain: Optional[int] = None


class DrawStore:
    """
    Posterior draws keyed by parameter base name.

    Every parameter is held as a read-only array of shape
    (n_draws, *parameter_shape); all parameters share the same n_draws.
    Element access uses 1-based index tuples, matching sampler labels.
    Stores are never modified in place: with_parameter and derive return
    new stores.
    """

    def __init__(self, parameters: Dict[str, Any], chains=None, iterations=None):
        if not parameters:
            raise InvalidParameterError("A draw store needs at least one parameter")

        self._parameters: Dict[str, np.ndarray] = {}
        self._n_draws: Optional[int] = None

        for name, values in parameters.items():
            array = np.array(values, dtype=float)
            if array.ndim == 0:
                raise InvalidParameterError(f"Parameter '{name}' has no draw axis")
            if self._n_draws is None:
                self._n_draws = array.shape[0]
            elif array.shape[0] != self._n_draws:
                raise InvalidParameterError(
                    f"Parameter '{name}' has {array.shape[0]} draws, expected {self._n_draws}"
                )
            array.setflags(write=False)
            self._parameters[name] = array

        self._chains = self._index_array(chains, 'chains')
        if iterations is None:
            iterations = np.arange(1, self._n_draws + 1)
        self._iterations = self._index_array(iterations, 'iterations')

    def _index_array(self, values, what: str) -> Optional[np.ndarray]:
        if values is None:
            return None
        array = np.array(values, dtype=int)
        if array.shape != (self._n_draws,):
            raise InvalidParameterError(
                f"Expected {self._n_draws} {what} entries, got shape {array.shape}"
            )
        array.setflags(write=False)
        return array

    # ------------------------------------------------------------------
    # constructors

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> 'DrawStore':
        """Build a store from a draws table with columns such as 'beta[1]' and 'sigma_e'"""
        chains = df['chain__'].to_numpy() if 'chain__' in df.columns else None
        iterations = df['iter__'].to_numpy() if 'iter__' in df.columns else None

        grouped: Dict[str, Dict[Index, str]] = {}
        for column in df.columns:
            if column in META_COLUMNS:
                continue
            name, index = parse_label(column)
            elements = grouped.setdefault(name, {})
            if elements and len(next(iter(elements))) != len(index):
                raise InvalidParameterError(f"Inconsistent index arity for parameter '{name}'")
            elements[index] = column

        parameters = {}
        for name, elements in grouped.items():
            if list(elements) == [()]:
                parameters[name] = df[elements[()]].to_numpy(dtype=float)
                continue

            shape = tuple(max(index[axis] for index in elements) for axis in range(len(next(iter(elements)))))
            values = np.full((len(df),) + shape, np.nan)
            for index, column in elements.items():
                values[(slice(None),) + tuple(i - 1 for i in index)] = df[column].to_numpy(dtype=float)

            missing = int(np.prod(shape)) - len(elements)
            if missing:
                logger.warning(f"Parameter '{name}' is missing {missing} of its elements; filled with NaN")
            parameters[name] = values

        logger.debug(f"Loaded {len(parameters)} parameters with {len(df)} draws from table")
        return cls(parameters, chains=chains, iterations=iterations)

    @classmethod
    def from_inference_data(cls, idata, group: str = 'posterior',
                            var_names: Optional[List[str]] = None) -> 'DrawStore':
        """Build a store from an arviz InferenceData group, stacking chains into one draw axis"""
        if group not in idata.groups():
            raise InvalidParameterError(f"InferenceData has no '{group}' group")

        dataset = getattr(idata, group)
        n_chains = dataset.sizes['chain']
        n_iterations = dataset.sizes['draw']
        names = var_names or list(dataset.data_vars)

        parameters = {}
        for name in names:
            if name not in dataset.data_vars:
                raise InvalidParameterError(f"Unknown parameter '{name}' in '{group}' group")
            data_array = dataset[name]
            other_dims = [dim for dim in data_array.dims if dim not in ('chain', 'draw')]
            values = data_array.transpose('chain', 'draw', *other_dims).values
            parameters[name] = values.reshape((n_chains * n_iterations,) + values.shape[2:])

        chains = np.repeat(np.arange(n_chains), n_iterations)
        iterations = np.tile(np.arange(1, n_iterations + 1), n_chains)
        return cls(parameters, chains=chains, iterations=iterations)

    # ------------------------------------------------------------------
    # access

    @property
    def n_draws(self) -> int:
        return self._n_draws

    @property
    def names(self) -> List[str]:
        return list(self._parameters)

    @property
    def chains(self) -> Optional[np.ndarray]:
        return self._chains

    @property
    def n_chains(self) -> int:
        if self._chains is None:
            return 1
        return len(np.unique(self._chains))

    def __len__(self) -> int:
        return self._n_draws

    def __contains__(self, name) -> bool:
        return name in self._parameters

    def __repr__(self) -> str:
        return f"DrawStore(n_draws={self._n_draws}, parameters={self.names})"

    def shape(self, name: str) -> Tuple[int, ...]:
        """Shape of one draw of a parameter; () for scalars"""
        return self._require(name).shape[1:]

    def _require(self, name: str) -> np.ndarray:
        if name not in self._parameters:
            raise InvalidParameterError(f"Unknown parameter '{name}'")
        return self._parameters[name]

    def _position(self, name: str, index) -> Tuple[int, ...]:
        shape = self.shape(name)
        if index is None:
            index = ()
        elif isinstance(index, (int, np.integer)):
            index = (index,)
        index = tuple(index)

        if len(index) != len(shape):
            raise InvalidParameterError(
                f"Parameter '{name}' takes {len(shape)} indices, got {format_label(name, index)}"
            )
        for i, size in zip(index, shape):
            if isinstance(i, bool) or not isinstance(i, (int, np.integer)) or not 1 <= i <= size:
                raise InvalidParameterError(
                    f"Index {format_label(name, index)} out of range for shape {shape}"
                )
        return tuple(int(i) - 1 for i in index)

    def get(self, name: str, index=None) -> np.ndarray:
        """Draws of one scalar element, e.g. get('L_u', (2, 1))"""
        position = self._position(name, index)
        return self._parameters[name][(slice(None),) + position].copy()

    def lookup(self, label: str) -> np.ndarray:
        return self.get(*parse_label(label))

    def get_array(self, name: str) -> np.ndarray:
        """All draws of a parameter, shape (n_draws, *shape)"""
        return self._require(name).copy()

    def draw(self, name: str, iteration: int) -> Draw:
        """The Draw at a 0-based position of the draw axis"""
        values = self._require(name)
        if not 0 <= iteration < self._n_draws:
            raise InvalidParameterError(f"Draw {iteration} out of range for {self._n_draws} draws")
        value = values[iteration]
        return Draw(
            parameter=name,
            value=float(value) if value.ndim == 0 else value.copy(),
            iteration=int(self._iterations[iteration]),
            chain=None if self._chains is None else int(self._chains[iteration]),
        )

    def labels(self, name: Optional[str] = None) -> List[str]:
        """Labels of every scalar element, of one parameter or of the whole store"""
        names = [name] if name is not None else self.names
        labels = []
        for parameter in names:
            shape = self.shape(parameter)
            if not shape:
                labels.append(parameter)
                continue
            for position in np.ndindex(*shape):
                labels.append(format_label(parameter, tuple(p + 1 for p in position)))
        return labels

    def by_chain(self, name: str, index=None) -> np.ndarray:
        """Draws of one element reshaped to (n_chains, n_iterations) for convergence diagnostics"""
        if self._chains is None:
            raise InvalidParameterError("Draw store has no chain information")

        values = self.get(name, index)
        chain_ids = np.unique(self._chains)
        per_chain = []
        for chain in chain_ids:
            mask = self._chains == chain
            order = np.argsort(self._iterations[mask], kind='stable')
            per_chain.append(values[mask][order])

        if len({len(draws) for draws in per_chain}) != 1:
            raise InvalidParameterError("Chains have unequal numbers of draws")
        return np.vstack(per_chain)

    # ------------------------------------------------------------------
    # derived parameters

    def with_parameter(self, name: str, values) -> 'DrawStore':
        """New store holding every parameter of this one plus `name`"""
        if name in self._parameters:
            raise InvalidParameterError(f"Parameter '{name}' already exists")
        parameters = dict(self._parameters)
        parameters[name] = values
        return DrawStore(parameters, chains=self._chains, iterations=self._iterations)

    def derive(self, name: str, func: Callable[..., np.ndarray], *sources: Source) -> 'DrawStore':
        """
        Add a parameter computed draw by draw from existing elements.

        Sources are labels ("beta[1]") or (name, index) pairs. For a log-scale
        effect on the millisecond scale:

            store.derive('so_ms', lambda b0, b1: np.exp(b0 + b1) - np.exp(b0 - b1),
                         'beta[1]', 'beta[2]')
        """
        if not sources:
            raise InvalidParameterError("derive needs at least one source parameter")

        arguments = []
        for source in sources:
            if isinstance(source, str):
                arguments.append(self.lookup(source))
            else:
                arguments.append(self.get(*source))

        values = np.asarray(func(*arguments), dtype=float)
        if values.shape[:1] != (self._n_draws,):
            raise InvalidParameterError(
                f"Derived parameter '{name}' has shape {values.shape}, expected {self._n_draws} draws"
            )
        return self.with_parameter(name, values)
