"""wasidiff: differential fuzzing of C compiled natively and to wasm32-wasi."""

__version__ = "0.1.0"
