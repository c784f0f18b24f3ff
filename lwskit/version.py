"""Build version information."""

GIT_VERSION = "v0.0.0-main"
GIT_COMMIT = "abcd01234"