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
''' Running the Git executables on behalf of a session. '''

import os

from twisted.internet import defer, protocol
from twisted.logger import Logger

log = Logger()


def exit_status(reason):
  ''' Convert the *reason* passed to `processEnded()` to an exit status.
  A process that was killed by a signal reports `128 + signal`. '''

  value = reason.value
  if getattr(value, 'exitCode', None) is not None:
    return value.exitCode
  if getattr(value, 'signal', None) is not None:
    return 128 + value.signal
  return 255


class GitProcessProtocol(protocol.ProcessProtocol):
  ''' Wires a Git process to a session. Output of the process is written
  to the session as soon as it arrives; the process transport is handed
  to the session with `attach_process()` so it can forward its input.
  *finished* fires with the exit status of the process. '''

  def __init__(self, session, verb):
    super().__init__()
    self.session = session
    self.verb = verb
    self.finished = defer.Deferred()

  def connectionMade(self):
    self.session.attach_process(self.transport)

  def outReceived(self, data):
    self.session.write(data)

  def errReceived(self, data):
    self.session.write_stderr(data)

  def processEnded(self, reason):
    status = exit_status(reason)
    log.info('{verb} exited with status {status}', verb=self.verb, status=status)
    self.finished.callback(status)


class ProcessPort(object):
  ''' Interface for starting the Git executables. '''

  def spawn(self, process_protocol, verb, path, env=None):
    ''' Start *verb* with the single argument *path* and connect it to
    *process_protocol*. *env* contains additional environment variables
    for the process. '''

    raise NotImplementedError


class ReactorProcessPort(ProcessPort):
  ''' Starts processes with `reactor.spawnProcess()`. The executable is
  looked up in *bin_dir* if it is set, otherwise on the `PATH`. '''

  def __init__(self, reactor=None, bin_dir=None):
    super().__init__()
    if reactor is None:
      from twisted.internet import reactor
    self.reactor = reactor
    self.bin_dir = bin_dir

  def spawn(self, process_protocol, verb, path, env=None):
    executable = os.path.join(self.bin_dir, verb) if self.bin_dir else verb
    environ = os.environ.copy()
    environ.update(env or {})
    return self.reactor.spawnProcess(process_protocol, executable,
      [verb, path], env=environ)
