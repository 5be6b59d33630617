import os

import pytest

from git_gate.errors import RepositoryNotFound, SandboxViolation
from git_gate.sandbox import PathSandbox, relpath


@pytest.fixture
def root(tmp_path):
  path = tmp_path / 'repos'
  (path / 'demo.git').mkdir(parents=True)
  (path / 'team' / 'tools.git').mkdir(parents=True)
  return str(path)


@pytest.fixture
def sandbox(root):
  return PathSandbox(root)


@pytest.mark.parametrize('path', [
  '../../etc/passwd',
  '/../../etc',
  'foo/../../bar',
  '..',
  '//etc/passwd',
  "'../../etc'",
  '',
  '/',
  '.',
  'demo.git/../..',
])
def test_escapes_are_rejected(sandbox, path):
  with pytest.raises(SandboxViolation):
    sandbox.resolve(path)


@pytest.mark.parametrize('path, name', [
  ('demo.git', 'demo.git'),
  ('/demo.git', 'demo.git'),
  ("'/demo.git'", 'demo.git'),
  ('"demo.git"', 'demo.git'),
  ('./demo.git/', 'demo.git'),
  ('team/../demo.git', 'demo.git'),
  ('/team/tools.git', os.path.join('team', 'tools.git')),
])
def test_paths_resolve_inside_root(sandbox, root, path, name):
  handle = sandbox.resolve(path)
  assert handle.name == name
  assert handle.path == os.path.join(root, name)
  assert handle.exists
  assert relpath(handle.path, root)


def test_missing_repository_is_not_a_violation(sandbox, root):
  handle = sandbox.resolve('/missing.git')
  assert handle.exists is False
  assert handle.path == os.path.join(root, 'missing.git')

  with pytest.raises(RepositoryNotFound) as excinfo:
    sandbox.open('/missing.git')
  assert str(excinfo.value) == 'Repository not found: missing.git'
  assert root not in str(excinfo.value)


def test_open_returns_existing_repository(sandbox):
  assert sandbox.open("'/demo.git'").exists


def test_file_is_not_a_repository(sandbox, root):
  with open(os.path.join(root, 'notes.txt'), 'w') as fp:
    fp.write('hello')
  with pytest.raises(RepositoryNotFound):
    sandbox.open('notes.txt')


def test_symlink_out_of_root_is_rejected(sandbox, root, tmp_path):
  outside = tmp_path / 'outside.git'
  outside.mkdir()
  os.symlink(str(outside), os.path.join(root, 'link.git'))
  with pytest.raises(SandboxViolation):
    sandbox.resolve('link.git')


def test_relative_root_is_made_absolute(tmp_path, monkeypatch):
  (tmp_path / 'demo.git').mkdir()
  monkeypatch.chdir(str(tmp_path))
  handle = PathSandbox('.').open('demo.git')
  assert handle.path == os.path.join(str(tmp_path), 'demo.git')


def test_relpath():
  assert relpath('/srv/repos/a.git', '/srv/repos') == 'a.git'
  assert relpath('/srv/repos', '/srv/repos') is None
  assert relpath('/srv/other', '/srv/repos') is None


def test_parent_token_that_lands_back_in_root_is_allowed(sandbox, root):
  # The root's own name reached through its parent is still inside.
  name = os.path.basename(root)
  handle = sandbox.resolve('../{}/demo.git'.format(name))
  assert handle.name == 'demo.git'
