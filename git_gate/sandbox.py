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
''' Confines paths supplied by clients to the repository root. '''

import collections
import os
import posixpath

from .errors import SandboxViolation, RepositoryNotFound

RepositoryHandle = collections.namedtuple('RepositoryHandle', 'path name exists')


def relpath(path, parent):
  ''' Returns *path* relative to *parent* or None if it is not a true
  subpath of *parent*. Both paths are compared lexically. '''

  try:
    result = os.path.relpath(path, parent)
  except ValueError:
    return None
  if result == os.curdir or result.startswith(os.pardir):
    return None
  return result


class PathSandbox(object):
  ''' Resolves repository paths requested by a client. The only state
  is the repository *root*, which is never modified, so one sandbox can
  be shared by all sessions.

  Client paths are always interpreted relative to the root, no matter
  whether they were written as absolute paths (``/demo.git``, which is
  what Git sends for ``ssh://host/demo.git``) or not. '''

  def __init__(self, root):
    super().__init__()
    self.root = os.path.normpath(os.path.abspath(root))

  def resolve(self, path):
    ''' Resolve *path* to a `RepositoryHandle` or raise `SandboxViolation`
    if it does not stay strictly inside the root. The filesystem is only
    consulted to fill in the *exists* flag of the handle. '''

    cleaned = path.strip().strip('\'"')
    if cleaned.startswith('/'):
      cleaned = cleaned[1:]
    cleaned = posixpath.normpath(cleaned) if cleaned else os.curdir
    if cleaned.startswith('/'):
      raise SandboxViolation(path)

    full = os.path.normpath(os.path.join(self.root, cleaned))
    name = relpath(full, self.root)
    if not name:
      raise SandboxViolation(path)

    exists = os.path.isdir(full)
    if exists:
      # Symlinks below the root must not lead out of it either.
      real = relpath(os.path.realpath(full), os.path.realpath(self.root))
      if not real:
        raise SandboxViolation(path)
    return RepositoryHandle(full, name, exists)

  def open(self, path):
    ''' Like `resolve()` but raises `RepositoryNotFound` if the resolved
    path is not an existing directory. The error only mentions the
    client's own root relative path. '''

    handle = self.resolve(path)
    if not handle.exists:
      raise RepositoryNotFound(handle.name)
    return handle
