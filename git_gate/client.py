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
''' The `git-gate` command line client. Creates repositories on a
git-gate server and passes everything else through to Git. '''

import os
import sys
import subprocess

from .commands import Verb

USAGE = '''\
git-gate - Git with a git-gate server

Usage:
  git-gate <command> [arguments]

Commands:
  clone <url> [args...]    Clone a repository from a git-gate server
  create <name>            Create a new bare repository on the server
  help                     Show this help message

Any other command is passed through to git, eg. `git-gate status`.

Environment:
  GIT_GATE_SERVER          Server as host[:port] (default: localhost:2222)
  GIT_GATE_SSH_USER        SSH login name (default: git)
'''


def split_server(server):
  ''' Split *server* into host and port. The port is None if it is not
  part of the string. '''

  host, sep, port = server.rpartition(':')
  if not sep or not port.isdigit():
    return server, None
  return host, port


def create_command(server, user, name):
  ''' Returns the ssh command line that creates the repository *name*. '''

  host, port = split_server(server)
  if not name.endswith('.git'):
    name += '.git'
  command = ['ssh']
  if port:
    command += ['-p', port]
  command += ['{}@{}'.format(user, host), '{} {}'.format(Verb.CREATE_REPO.value, name)]
  return command


def clone_url(server, user, name):
  host, port = split_server(server)
  if not name.endswith('.git'):
    name += '.git'
  netloc = '{}@{}'.format(user, host) + (':' + port if port else '')
  return 'ssh://{}/{}'.format(netloc, name)


def main(argv=None):
  if argv is None:
    argv = sys.argv[1:]
  command, args = (argv[0], argv[1:]) if argv else (None, [])
  server = os.environ.get('GIT_GATE_SERVER') or 'localhost:2222'
  user = os.environ.get('GIT_GATE_SSH_USER') or 'git'

  if not command or command in ('help', '-h', '--help'):
    print(USAGE)
    return 0 if command else 1

  if command == 'create':
    if len(args) != 1:
      print('error: create requires a repository name', file=sys.stderr)
      return 1
    name = args[0]
    res = subprocess.call(create_command(server, user, name))
    if res != 0:
      print('error: could not create repository {!r}'.format(name), file=sys.stderr)
      return res
    print("Repository '{}' created on {}".format(name, server))
    print('Clone it with: git-gate clone {}'.format(clone_url(server, user, name)))
    return 0

  if command == 'clone':
    if not args:
      print('error: clone requires a repository URL', file=sys.stderr)
      return 1
    return subprocess.call(['git', 'clone'] + args)

  return subprocess.call(['git', command] + args)


if __name__ == '__main__':
  sys.exit(main())
