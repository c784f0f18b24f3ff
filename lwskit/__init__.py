"""Leader/worker group helpers: pod and set defaulting, validation, TPU environment and revisions."""

__version__ = "0.1.0"