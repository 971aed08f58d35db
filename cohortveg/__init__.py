"""cohortveg: Cohort-based vegetation demography at a single site.

A size-structured model of woody and herbaceous vegetation coupling:
  - Sub-daily carbon and water budgets per cohort (photosynthesis and soil
    water balance as replaceable pure collaborators)
  - Daily phenology, allocation and tissue turnover
  - Annual demography: starvation, size/layer-dependent mortality,
    reproduction, and population maintenance (prune, relayer, merge)
  - Perfect-plasticity canopy layering by height ranking

References:
  - Weng et al. 2015, Biogeosciences 12:2655
  - Strigul et al. 2008, Ecological Monographs 78:523
"""

__version__ = "0.1.0"
