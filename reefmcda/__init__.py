"""ReefMCDA: site selection for coral-reef intervention planning.

Ranks reef sites for coral seeding and shading interventions:
  - Connectivity network metrics (betweenness, Katz, strongest predecessor)
  - Per-replicate multi-criteria decision matrices with feasibility filters
  - Weighted-sum, TOPSIS and VIKOR scoring with distance-spaced selection
  - Proportional allocation of seeded coral area across selected sites
"""

__version__ = "0.1.0"
