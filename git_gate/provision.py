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
''' Creation of new bare repositories below the repository root. '''

import os
import shutil
import subprocess
import tempfile

from twisted.logger import Logger

from . import hooks
from .errors import InvalidName, AlreadyExists, ProvisioningFailed
from .sandbox import RepositoryHandle

log = Logger()


def canonical_name(name):
  ''' Validate the repository *name* and return it with the `.git` suffix.
  Names are single path components: anything that contains a separator
  or a parent directory token raises `InvalidName`. '''

  name = name.strip().strip('\'"')
  if not name or '..' in name or '/' in name or '\\' in name:
    raise InvalidName(name)
  if any(char.isspace() or ord(char) < 32 for char in name):
    raise InvalidName(name)
  if not name.endswith('.git'):
    name += '.git'
  if name == '.git' or name.startswith('-'):
    raise InvalidName(name)
  return name


class RepoProvisioner(object):
  ''' Creates bare repositories in *root* and installs the gateway hooks
  into them.

  Arguments:
    root (str): The repository root directory. It must exist.
    git (str): The Git executable used for `git init --bare`.
    hook_scripts (dict): The hook scripts as returned by
      `hooks.render_hooks()`. Defaults to the scripts for the default
      pipeline settings.
  '''

  def __init__(self, root, git='git', hook_scripts=None):
    super().__init__()
    self.root = os.path.abspath(root)
    self.git = git
    if hook_scripts is None:
      hook_scripts = hooks.render_hooks()
    self.hook_scripts = hook_scripts

  def create(self, name):
    ''' Create the repository *name* and return its `RepositoryHandle`.
    Raises `InvalidName`, `AlreadyExists` or `ProvisioningFailed`. The
    latter is only raised after the partially created directories were
    removed again.

    The empty directory at the final path reserves the name. The
    repository is built in a hidden staging directory next to it and
    renamed over the reservation once its hooks are installed, so other
    sessions only ever see an empty directory or a complete repository. '''

    name = canonical_name(name)
    path = os.path.join(self.root, name)

    try:
      os.mkdir(path, 0o755)
    except FileExistsError:
      raise AlreadyExists(name)
    except OSError as exc:
      raise ProvisioningFailed(name, exc.strerror or str(exc))

    staging = None
    try:
      staging = tempfile.mkdtemp(dir=self.root, prefix='.' + name + '-')
      os.chmod(staging, 0o755)
      self._init_bare(staging)
      hooks.install_hooks(staging, self.hook_scripts)
      os.rename(staging, path)
    except subprocess.CalledProcessError as exc:
      log.error('git init failed for {path}: {output}', path=path, output=exc.output)
      self._remove(staging, path)
      raise ProvisioningFailed(name, 'git init exited with status {}'.format(exc.returncode))
    except OSError as exc:
      log.error('provisioning {path} failed: {error}', path=path, error=str(exc))
      self._remove(staging, path)
      raise ProvisioningFailed(name, exc.strerror or type(exc).__name__)

    log.info('created repository {path}', path=path)
    return RepositoryHandle(path, name, True)

  def _init_bare(self, path):
    proc = subprocess.run([self.git, 'init', '--quiet', '--bare', path],
      stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    if proc.returncode != 0:
      output = proc.stdout.decode('utf8', 'replace').strip()
      raise subprocess.CalledProcessError(proc.returncode, proc.args, output)

  def _remove(self, *paths):
    for path in paths:
      if path is None or not os.path.lexists(path):
        continue
      try:
        shutil.rmtree(path)
      except OSError as exc:
        log.error('could not remove partial repository {path}: {error}',
          path=path, error=str(exc))
