"""Domain core: models, snapshots, derivation algorithms and ports."""
