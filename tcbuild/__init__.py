"""tcbuild - manifest-driven toolchain build orchestrator."""

__version__ = "1.0.0"
