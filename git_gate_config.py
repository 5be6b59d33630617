# -*- mode: python; tab-width: 2; coding: utf8 -*-
# git-gate configuration file, use it with `git-gate-server --config`.

import os

repository_root = os.path.expanduser('~/repos')
listen = 'tcp:2222:interface=0.0.0.0'
host_key = os.path.expanduser('~/.git-gate/host_key')
authorized_keys = os.path.expanduser('~/.git-gate/authorized_keys')

# Set to 'report' to let the post-receive hook exit with a non-zero status
# when the pipeline script fails for one of the pushed refs.
pipeline_failure_policy = 'ignore'
log_level = 'info'
