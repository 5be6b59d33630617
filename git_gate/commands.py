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
''' Parsing and dispatching of the single command a session may run. '''

import collections
import enum
import struct

from twisted.internet import defer, threads
from twisted.logger import Logger, LogLevel

from .errors import GatewayError, SandboxViolation, UnknownCommand, UsageError
from .process import GitProcessProtocol

log = Logger()


class Verb(enum.Enum):
  UPLOAD_PACK = 'git-upload-pack'
  RECEIVE_PACK = 'git-receive-pack'
  CREATE_REPO = 'git-gate-create-repo'


Command = collections.namedtuple('Command', 'verb argument')


class MalformedRequest(ValueError):
  ''' The payload of an `exec` request could not be decoded. '''


def parse_exec_payload(payload):
  ''' Decode the payload of an SSH `exec` request, a string prefixed by
  its length as an unsigned 32 bit big endian integer. Bytes after the
  string are ignored. Raises `MalformedRequest`. '''

  if len(payload) < 4:
    raise MalformedRequest('truncated payload')
  (length,) = struct.unpack('!I', payload[:4])
  if length > len(payload) - 4:
    raise MalformedRequest('length {} exceeds payload of {} bytes'
      .format(length, len(payload) - 4))
  try:
    return payload[4:4 + length].decode('utf8')
  except UnicodeDecodeError:
    raise MalformedRequest('command is not valid UTF-8')


def parse_command(line):
  ''' Parse a command *line* into a `Command`. The first word selects
  the verb, the rest of the line is its argument. Raises `UnknownCommand`
  or `UsageError`. '''

  parts = line.split(None, 1)
  if not parts:
    raise UnknownCommand(line)
  try:
    verb = Verb(parts[0])
  except ValueError:
    raise UnknownCommand(line)
  argument = parts[1].strip() if len(parts) > 1 else ''
  if not argument:
    if verb == Verb.CREATE_REPO:
      raise UsageError('Usage: {} <repo-name>'.format(verb.value))
    raise UsageError('Usage: {} <repo-path>'.format(verb.value))
  return Command(verb, argument)


class Dispatcher(object):
  ''' Runs commands for sessions. A session is an object with the methods
  `write()`, `write_stderr()` and `attach_process()`.

  Arguments:
    sandbox (PathSandbox): Resolves the paths of Git commands.
    provisioner (RepoProvisioner): Creates new repositories.
    process_port (ProcessPort): Starts the Git executables.
    run_blocking (callable): Runs a blocking function and returns a
      Deferred. Defaults to `threads.deferToThread()`.
  '''

  handlers = {}

  def __init__(self, sandbox, provisioner, process_port, run_blocking=None):
    super().__init__()
    self.sandbox = sandbox
    self.provisioner = provisioner
    self.process_port = process_port
    self.run_blocking = run_blocking or threads.deferToThread

  def dispatch(self, line, session, identity):
    ''' Parse and run the command *line* for the authenticated *identity*.
    Returns a Deferred that fires with the exit status of the command.
    Errors are reported to the *session* and never propagate. '''

    try:
      command = parse_command(line)
    except GatewayError as exc:
      return defer.succeed(self._report(exc, session, identity, line))

    log.info('{username} runs {verb} {argument!r}', username=identity.username,
      verb=command.verb.value, argument=command.argument)
    handler = self.handlers[command.verb]
    d = defer.maybeDeferred(handler, self, command, session, identity)
    d.addErrback(self._failed, session, identity, line)
    return d

  def _failed(self, failure, session, identity, line):
    if failure.check(GatewayError):
      return self._report(failure.value, session, identity, line)
    log.failure('command {line!r} of {username} failed', failure,
      line=line, username=identity.username)
    session.write_stderr(b'Internal server error\n')
    return 255

  def _report(self, exc, session, identity, line):
    level = LogLevel.warn if isinstance(exc, SandboxViolation) else LogLevel.info
    log.emit(level, 'rejected {line!r} of {username}: {error}', line=line,
      username=identity.username, error=str(exc))
    session.write_stderr((str(exc) + '\n').encode('utf8'))
    return exc.exit_code


def handler(*verbs):
  ''' Decorator that registers a function as the handler for *verbs*.
  The function is called with the dispatcher, the `Command`, the session
  and the identity and returns the exit status or a Deferred for it. '''

  def decorator(func):
    for verb in verbs:
      Dispatcher.handlers[verb] = func
    return func

  return decorator


@handler(Verb.UPLOAD_PACK, Verb.RECEIVE_PACK)
def _handle_git(dispatcher, command, session, identity):
  handle = dispatcher.sandbox.open(command.argument)
  proto = GitProcessProtocol(session, command.verb.value)
  dispatcher.process_port.spawn(proto, command.verb.value, handle.path,
    env={'GIT_GATE_USER': identity.username})
  return proto.finished


@handler(Verb.CREATE_REPO)
def _handle_create_repo(dispatcher, command, session, identity):
  def created(handle):
    log.info('{username} created {name}', username=identity.username,
      name=handle.name)
    session.write('Repository created: {}\n'.format(handle.name).encode('utf8'))
    return 0

  d = dispatcher.run_blocking(dispatcher.provisioner.create, command.argument)
  return d.addCallback(created)
