import itertools
import logging
from dataclasses import dataclass

import numpy as np

from deconqtl.exceptions import ConfigurationError

logger = logging.getLogger("main")

GENOTYPE_CONFIGURATION_TYPES = ("all", "two", "one")
ENUMERATION_MODES = GENOTYPE_CONFIGURATION_TYPES + ("ols-default", "base")

# in base mode the full model has a celltype:GT and a (100-celltype):GT term and the
# ct model only the (100-celltype):GT term
BASE_FULL_MODEL_ARITY = 2
BASE_CT_MODEL_ARITY = 1


@dataclass(frozen=True)
class GenotypeConfiguration:
    """
    Orientation of the genotype in each interaction term of a model.

    Bit `i` is False when the interaction term at position `i` uses the genotype
    dosage as given, and True when it uses the swapped dosage (2 - dosage). The
    string form is the familiar "010" notation.

    """

    bits: tuple[bool, ...]

    @classmethod
    def from_string(cls, configuration: str) -> "GenotypeConfiguration":
        """
        Parse a configuration such as "0110".

        :param configuration: String consisting of "0" and "1" characters.
        :return: The parsed configuration.
        :raises ConfigurationError: If the string contains any other character.

        """
        if not isinstance(configuration, str) or set(configuration) - {"0", "1"}:
            raise ConfigurationError(
                f"Genotype configuration should only contain 0 or 1, "
                f"was: {configuration!r}"
            )
        return cls(tuple(c == "1" for c in configuration))

    @classmethod
    def zeros(cls, n: int) -> "GenotypeConfiguration":
        return cls((False,) * n)

    @classmethod
    def ones(cls, n: int) -> "GenotypeConfiguration":
        return cls((True,) * n)

    def __str__(self) -> str:
        return "".join("1" if bit else "0" for bit in self.bits)

    def __len__(self) -> int:
        return len(self.bits)

    def __getitem__(self, position: int) -> bool:
        return self.bits[position]

    def is_swapped(self, position: int) -> bool:
        return self.bits[position]

    def flip(self, position: int) -> "GenotypeConfiguration":
        """Return a copy with the bit at `position` inverted."""
        bits = list(self.bits)
        bits[position] = not bits[position]
        return GenotypeConfiguration(tuple(bits))

    def drop(self, position: int) -> "GenotypeConfiguration":
        """Return the configuration with the bit at `position` removed."""
        if not 0 <= position < len(self.bits):
            raise IndexError(
                f"Position {position} out of range for configuration {self}"
            )
        return GenotypeConfiguration(self.bits[:position] + self.bits[position + 1 :])

    def complement(self) -> "GenotypeConfiguration":
        return GenotypeConfiguration(tuple(not bit for bit in self.bits))


def swap_genotypes(genotypes) -> np.ndarray:
    """
    Swap the genotype dosages, 0 becomes 2 and 2 becomes 0.

    :param genotypes: Dosages in [0, 2].
    :return: A new array with `2 - genotypes`.

    """
    return 2 - np.asarray(genotypes, dtype=float)


def binary_permutations(n: int) -> list[GenotypeConfiguration]:
    """
    All 2**n configurations of length `n`, e.g. for n = 2: 00, 01, 10, 11.

    :param n: Length of the configurations.
    :return: List of configurations in counting order.

    """
    if n < 0:
        raise ConfigurationError(f"Configuration length must be >= 0, was: {n}")
    return [
        GenotypeConfiguration(tuple(bits))
        for bits in itertools.product((False, True), repeat=n)
    ]


def enumerate_configurations(n: int, mode: str) -> list[GenotypeConfiguration]:
    """
    Enumerate the genotype configurations of the full model.

    - "all": every combination, 2**n configurations.
    - "two": all normal and all swapped, e.g. 000 and 111.
    - "one": as "two", plus every configuration that differs from all normal or all
      swapped at a single position, e.g. 000, 111, 100, 010, 001, 011, 101, 110.
      Duplicates are kept, they only occur when n <= 1.
    - "ols-default": only the all normal configuration. OLS does not search over
      genotype orientations.
    - "base": the celltype vs rest model, which always has 2 interaction terms, so
      all 4 configurations of length 2. `n` is ignored.

    :param n: Number of interaction terms, i.e. the number of cell types.
    :param mode: One of `ENUMERATION_MODES`.
    :return: Ordered list of configurations.
    :raises ConfigurationError: If `mode` is not a known mode.

    """
    if mode == "all":
        return binary_permutations(n)
    if mode == "two":
        return [GenotypeConfiguration.zeros(n), GenotypeConfiguration.ones(n)]
    if mode == "one":
        configurations = [GenotypeConfiguration.zeros(n), GenotypeConfiguration.ones(n)]
        configurations.extend(GenotypeConfiguration.zeros(n).flip(i) for i in range(n))
        configurations.extend(GenotypeConfiguration.ones(n).flip(i) for i in range(n))
        return configurations
    if mode == "ols-default":
        return [GenotypeConfiguration.zeros(n)]
    if mode == "base":
        return binary_permutations(BASE_FULL_MODEL_ARITY)
    logger.error(f"Unknown genotype configuration mode: {mode}")
    raise ConfigurationError(
        f"configurationType should be one of {', '.join(ENUMERATION_MODES)}, "
        f"was: {mode}"
    )


def enumerate_ct_configurations(
    n_celltypes: int, mode: str
) -> list[GenotypeConfiguration]:
    """
    Enumerate the genotype configurations of the ct models.

    A ct model has one interaction term less than the full model. Unless OLS or the
    base model is used, all 2**(n_celltypes - 1) configurations are tested no
    matter how the full model configurations were enumerated.

    :param n_celltypes: Number of cell types.
    :param mode: One of `ENUMERATION_MODES`.
    :return: Ordered list of configurations.
    :raises ConfigurationError: If `mode` is not a known mode.

    """
    if mode not in ENUMERATION_MODES:
        logger.error(f"Unknown genotype configuration mode: {mode}")
        raise ConfigurationError(
            f"configurationType should be one of {', '.join(ENUMERATION_MODES)}, "
            f"was: {mode}"
        )
    if mode == "ols-default":
        return [GenotypeConfiguration.zeros(n_celltypes - 1)]
    if mode == "base":
        return binary_permutations(BASE_CT_MODEL_ARITY)
    return binary_permutations(n_celltypes - 1)


def derive_ct_configurations(
    full_configuration: GenotypeConfiguration,
) -> list[GenotypeConfiguration]:
    """
    The ct model configurations that match a full model configuration.

    Entry `i` is the configuration of the ct model of cell type `i`, which is the
    full model configuration with position `i` deleted.

    """
    return [full_configuration.drop(i) for i in range(len(full_configuration))]
