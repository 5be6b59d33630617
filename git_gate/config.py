# -*- mode: python; tab-width: 2; coding: utf8 -*-
#
# Copyright (C) 2015 Niklas Rosenstein
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND,
# either express or implied. See the License for the specific
# language governing permissions and limitations under the License.
''' Server configuration. A configuration file is a Python script whose
module level names override the defaults, see `git_gate_config.py` for
an example. '''

import os
import runpy
import types

from . import hooks

LOG_LEVELS = ('debug', 'info', 'warn', 'error', 'critical')


class ConfigError(ValueError):
  pass


class Config(object):
  ''' Holds the server settings as attributes.

  Settings:
    repository_root (str): Directory that contains the bare repositories.
    listen (str): Twisted endpoint description of the SSH port.
    host_key (str): Path of the SSH host key. Generated if missing.
    authorized_keys (str): Path of the `authorized_keys` file.
    git_bin_dir (str): Directory of `git-upload-pack` and
      `git-receive-pack`. If None they are looked up on the `PATH`.
    git (str): The Git executable used to initialize repositories.
    pipeline_script (str): Name of the pipeline script inside of a
      repository that the post-receive hook runs.
    pipeline_failure_policy (str): `ignore` or `report`, see
      `hooks.render_hooks()`.
    log_level (str): One of `LOG_LEVELS`.
  '''

  defaults = {
    'repository_root': '/var/lib/git-gate/repos',
    'listen': 'tcp:2222',
    'host_key': '/var/lib/git-gate/ssh/host_key',
    'authorized_keys': '/var/lib/git-gate/ssh/authorized_keys',
    'git_bin_dir': None,
    'git': 'git',
    'pipeline_script': hooks.PIPELINE_SCRIPT,
    'pipeline_failure_policy': hooks.POLICY_IGNORE,
    'log_level': 'info',
  }

  def __init__(self, **settings):
    super().__init__()
    self.__dict__.update(self.defaults)
    self.update(settings)

  def update(self, settings):
    ''' Override settings from the dictionary *settings*. Values that are
    None are ignored. Raises `ConfigError` for unknown settings. '''

    for key, value in settings.items():
      if key not in self.defaults:
        raise ConfigError('unknown setting {!r}'.format(key))
      if value is not None:
        setattr(self, key, value)
    return self

  def validate(self):
    if self.pipeline_failure_policy not in hooks.FAILURE_POLICIES:
      raise ConfigError('pipeline_failure_policy must be one of {}'
        .format(', '.join(hooks.FAILURE_POLICIES)))
    if self.log_level not in LOG_LEVELS:
      raise ConfigError('log_level must be one of {}'.format(', '.join(LOG_LEVELS)))
    try:
      hooks.render_hooks(self.pipeline_script, self.pipeline_failure_policy)
    except ValueError as exc:
      raise ConfigError(str(exc))
    return self

  @classmethod
  def from_file(cls, filename):
    ''' Execute the Python file *filename* and create a `Config` from its
    public module level names. Modules, functions and classes defined or
    imported by the file are ignored. '''

    namespace = runpy.run_path(filename)
    settings = {}
    for key, value in namespace.items():
      if key.startswith('_') or callable(value) or isinstance(value, types.ModuleType):
        continue
      settings[key] = value
    return cls(**settings)

  def hook_scripts(self):
    return hooks.render_hooks(self.pipeline_script, self.pipeline_failure_policy)

  def ensure_directories(self):
    ''' Create the repository root and the host key directory. '''

    os.makedirs(self.repository_root, mode=0o755, exist_ok=True)
    dirname = os.path.dirname(os.path.abspath(self.host_key))
    os.makedirs(dirname, mode=0o700, exist_ok=True)
