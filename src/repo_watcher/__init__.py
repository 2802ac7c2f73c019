from importlib.metadata import PackageNotFoundError, version

try:
    VERSION = version("repo-watcher")
except PackageNotFoundError:
    # Running from a source checkout that was never installed.
    VERSION = "0.0.0"
