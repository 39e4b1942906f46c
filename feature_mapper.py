from typing import Dict, Mapping, Optional

from config import FeatureMapping, coerce_mapping, default_feature_mapping
from logging_utils import log_event


class FeatureMapper:
    """Weighted mapping from band energies to named visual parameters.

    Each band's energy times its weight is added to the primary parameter and
    ``secondary_weight`` of it to the secondary parameter. Several bands may
    feed the same parameter; results are not clamped.
    """

    def __init__(self, table: Optional[Mapping[str, FeatureMapping]] = None,
                 secondary_weight: float = 0.7):
        source = table if table is not None else default_feature_mapping()
        self.table: Dict[str, FeatureMapping] = {
            band: FeatureMapping(m.primary, m.secondary, m.weight) for band, m in source.items()
        }
        self.secondary_weight = secondary_weight

    def map(self, energy_by_band: Mapping[str, float]) -> Dict[str, float]:
        params: Dict[str, float] = {}
        for band, energy in energy_by_band.items():
            mapping = self.table.get(band)
            if mapping is None:
                continue

            weighted = energy * mapping.weight
            if mapping.primary:
                params[mapping.primary] = params.get(mapping.primary, 0.0) + weighted
            if mapping.secondary:
                params[mapping.secondary] = (
                    params.get(mapping.secondary, 0.0) + weighted * self.secondary_weight
                )
        return params

    def merged(self, changes: Mapping[str, object]) -> Dict[str, FeatureMapping]:
        """New table with ``changes`` laid over the current one, band by band."""
        table = dict(self.table)
        for band, entry in changes.items():
            mapping = coerce_mapping(entry)
            if mapping is None:
                log_event("WARN", "Config", "Ignoring malformed feature mapping", band=band)
                continue
            table[band] = mapping
        return table


def total_energy(energy_by_band: Mapping[str, float]) -> float:
    """Unweighted mean of all band energies."""
    if not energy_by_band:
        return 0.0
    return sum(energy_by_band.values()) / len(energy_by_band)
