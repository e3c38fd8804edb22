"""dossierforge: incremental, checkpointed pipeline engine for pitch dossiers."""

from dossierforge.version import __version__

__all__ = ["__version__"]
