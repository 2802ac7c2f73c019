"""Filesystem paths common to multiple modules."""

import platformdirs

app_dir = platformdirs.user_config_path("repo-watcher")
