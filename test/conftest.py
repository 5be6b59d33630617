import shutil

import pytest
from twisted.logger import formatEvent, globalLogPublisher

from git_gate.auth import Identity

requires_git = pytest.mark.skipif(shutil.which('git') is None, reason='git is not installed')
requires_sh = pytest.mark.skipif(shutil.which('sh') is None, reason='sh is not available')


class FakeSession(object):
  ''' Records what the dispatcher writes to a session. '''

  def __init__(self):
    self.stdout = b''
    self.stderr = b''
    self.process = None

  def write(self, data):
    self.stdout += data

  def write_stderr(self, data):
    self.stderr += data

  def attach_process(self, process):
    self.process = process


class FakeProcessTransport(object):

  def __init__(self):
    self.stdin = b''
    self.stdin_closed = False
    self.signals = []
    self.exited = False
    self.producing = []

  def write(self, data):
    self.stdin += data

  def closeStdin(self):
    self.stdin_closed = True

  def pauseProducing(self):
    self.producing.append('pause')

  def resumeProducing(self):
    self.producing.append('resume')

  def signalProcess(self, signal):
    from twisted.internet.error import ProcessExitedAlready
    if self.exited:
      raise ProcessExitedAlready()
    self.signals.append(signal)


class FakeProcessPort(object):
  ''' Connects every spawned protocol to a `FakeProcessTransport`. '''

  def __init__(self):
    self.spawned = []

  def spawn(self, process_protocol, verb, path, env=None):
    transport = FakeProcessTransport()
    self.spawned.append((process_protocol, verb, path, env, transport))
    process_protocol.makeConnection(transport)
    return transport


@pytest.fixture
def identity():
  return Identity('alice', None)


@pytest.fixture
def log_messages():
  ''' Collects the formatted text of all log events emitted by the test. '''

  events = []
  globalLogPublisher.addObserver(events.append)
  yield events
  globalLogPublisher.removeObserver(events.append)


def formatted(events):
  return '\n'.join(formatEvent(event) for event in events)
