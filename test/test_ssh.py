import os
import stat
import struct

import pytest
from twisted.conch.interfaces import IConchUser
from twisted.conch.ssh import keys
from twisted.internet import defer
from twisted.internet.error import ProcessDone
from twisted.internet.task import Clock
from twisted.python.failure import Failure

from conftest import FakeProcessPort
from git_gate.auth import AuthenticationGate, MemoryKeyStore
from git_gate.commands import Dispatcher
from git_gate.sandbox import PathSandbox
from git_gate.ssh import (COMPLETED, DISPATCHING, REJECTED, GatewayChannel,
  GatewayFactory, GatewayRealm, GatewayUser, load_host_key)


def exec_payload(command):
  data = command.encode('utf8')
  return struct.pack('!L', len(data)) + data


class StubConnection(object):
  ''' Records the messages a channel sends through its connection. '''

  def __init__(self):
    self.data = []
    self.extended = []
    self.requests = []
    self.closes = 0
    self.eofs = 0

  def sendData(self, channel, data):
    self.data.append(data)

  def sendExtendedData(self, channel, type, data):
    self.extended.append((type, data))

  def sendRequest(self, channel, requestType, data, wantReply=0):
    self.requests.append((requestType, data))

  def sendEOF(self, channel):
    self.eofs += 1

  def sendClose(self, channel):
    self.closes += 1

  @property
  def stdout(self):
    return b''.join(self.data)

  @property
  def stderr(self):
    return b''.join(data for _, data in self.extended)

  def exit_status(self):
    for request_type, data in self.requests:
      if request_type == b'exit-status':
        return struct.unpack('>L', data)[0]
    return None


@pytest.fixture
def clock():
  return Clock()


@pytest.fixture
def port():
  return FakeProcessPort()


@pytest.fixture
def repos(tmp_path):
  (tmp_path / 'demo.git').mkdir()
  return str(tmp_path)


@pytest.fixture
def user(repos, port, identity, clock):
  dispatcher = Dispatcher(PathSandbox(repos), None, port,
    run_blocking=defer.maybeDeferred)
  return GatewayUser(identity, dispatcher, clock)


@pytest.fixture
def conn():
  return StubConnection()


@pytest.fixture
def channel(user, conn):
  chan = GatewayChannel(remoteWindow=2 ** 20, remoteMaxPacket=2 ** 15,
    conn=conn, avatar=user)
  return chan


def test_unknown_command_reports_and_closes(channel, conn, port, clock):
  assert channel.requestReceived(b'exec', exec_payload('rm -rf /')) == 1
  assert conn.requests == []
  clock.advance(0)
  assert b'Unknown command: rm -rf /' in conn.stderr
  assert conn.exit_status() == 127
  assert conn.closes == 1
  assert channel.state == COMPLETED
  assert port.spawned == []


@pytest.mark.parametrize('request_type', [b'shell', b'pty-req', b'subsystem', b'env', b'x11-req'])
def test_other_requests_are_refused(channel, conn, port, request_type):
  assert channel.requestReceived(request_type, b'') == 0
  assert conn.requests == []
  assert port.spawned == []


@pytest.mark.parametrize('data', [b'', b'\x00\x00\x00', b'\x00\x00\x01\x00git-upload-pack'])
def test_malformed_exec_is_rejected(channel, conn, clock, port, data):
  assert channel.requestReceived(b'exec', data) == 0
  clock.advance(0)
  assert channel.state == REJECTED
  assert conn.closes == 1
  assert conn.exit_status() is None
  assert port.spawned == []


def test_git_command_is_streamed(channel, conn, port, clock):
  channel.dataReceived(b'early')
  assert channel.requestReceived(b'exec', exec_payload("git-upload-pack '/demo.git'")) == 1
  channel.dataReceived(b'before spawn')
  assert port.spawned == []
  clock.advance(0)

  proto, verb, path, env, transport = port.spawned[0]
  assert verb == 'git-upload-pack'
  assert transport.stdin == b'earlybefore spawn'
  channel.dataReceived(b'more')
  assert transport.stdin == b'earlybefore spawnmore'
  channel.eofReceived()
  assert transport.stdin_closed

  proto.outReceived(b'pack data')
  proto.errReceived(b'progress')
  assert conn.stdout == b'pack data'
  assert conn.stderr == b'progress'
  assert channel.state == DISPATCHING

  proto.processEnded(Failure(ProcessDone(0)))
  assert conn.exit_status() == 0
  assert conn.closes == 1
  assert channel.state == COMPLETED


def test_eof_before_spawn_is_delivered(channel, port, clock):
  channel.requestReceived(b'exec', exec_payload('git-receive-pack demo.git'))
  channel.eofReceived()
  clock.advance(0)
  assert port.spawned[0][4].stdin_closed


def test_second_command_is_rejected(channel, conn, port, clock):
  assert channel.requestReceived(b'exec', exec_payload('git-upload-pack demo.git')) == 1
  clock.advance(0)
  assert channel.requestReceived(b'exec', exec_payload('git-receive-pack demo.git')) == 0
  clock.advance(0)
  assert len(port.spawned) == 1
  assert channel.state == REJECTED
  assert conn.closes == 1


def test_close_kills_running_process(channel, port, clock):
  channel.requestReceived(b'exec', exec_payload('git-upload-pack demo.git'))
  clock.advance(0)
  transport = port.spawned[0][4]
  channel.closed()
  assert transport.signals == ['KILL']
  assert channel.state == REJECTED


def test_close_after_exit_does_not_kill(channel, conn, port, clock):
  channel.requestReceived(b'exec', exec_payload('git-upload-pack demo.git'))
  clock.advance(0)
  proto, _, _, _, transport = port.spawned[0]
  proto.processEnded(Failure(ProcessDone(0)))
  transport.exited = True
  channel.closed()
  assert transport.signals == []
  assert channel.state == COMPLETED


def test_close_before_dispatch_spawns_nothing(channel, port, clock):
  channel.requestReceived(b'exec', exec_payload('git-upload-pack demo.git'))
  channel.closed()
  clock.advance(0)
  assert port.spawned == []


def test_user_only_knows_session_channels(user):
  assert list(user.channelLookup) == [b'session']
  assert user.channelLookup[b'session'] is GatewayChannel


def test_realm_returns_gateway_user(identity, clock):
  dispatcher = object()
  interface, avatar, logout = GatewayRealm(dispatcher, clock).requestAvatar(
    identity, None, IConchUser)
  assert interface is IConchUser
  assert avatar.identity is identity
  assert avatar.dispatcher is dispatcher
  logout()


def test_host_key_is_generated_once(tmp_path):
  filename = str(tmp_path / 'ssh' / 'host_key')
  key = load_host_key(filename, bits=2048)
  assert not key.isPublic()
  assert key.type() == 'RSA'
  assert stat.S_IMODE(os.stat(filename).st_mode) == 0o600
  assert load_host_key(filename) == key


def test_invalid_host_key_is_an_error(tmp_path):
  filename = str(tmp_path / 'host_key')
  with open(filename, 'w') as fp:
    fp.write('not a key\n')
  with pytest.raises(keys.BadKeyError):
    load_host_key(filename)


def test_factory(tmp_path, identity):
  key = load_host_key(str(tmp_path / 'host_key'), bits=2048)
  checker = AuthenticationGate(MemoryKeyStore())
  factory = GatewayFactory(key, object(), checker, Clock())
  assert factory.privateKeys == {b'ssh-rsa': key}
  assert factory.publicKeys[b'ssh-rsa'] == key.public()
  assert list(factory.portal.listCredentialsInterfaces()) == list(checker.credentialInterfaces)


def test_full_window_pauses_process(user, conn, port, clock):
  chan = GatewayChannel(remoteWindow=1024, remoteMaxPacket=512, conn=conn, avatar=user)
  chan.requestReceived(b'exec', exec_payload('git-upload-pack demo.git'))
  clock.advance(0)
  proto, _, _, _, transport = port.spawned[0]

  proto.outReceived(b'x' * 4096)
  assert transport.producing == ['pause']
  assert len(conn.stdout) == 1024
  proto.outReceived(b'y' * 4096)
  assert len(chan.buf) == 3072 + 4096

  chan.addWindowBytes(1 << 20)
  assert transport.producing == ['pause', 'resume']
  assert conn.stdout == b'x' * 4096 + b'y' * 4096
  assert chan.buf == b''


def test_full_window_pauses_on_stderr(user, conn, port, clock):
  chan = GatewayChannel(remoteWindow=16, remoteMaxPacket=16, conn=conn, avatar=user)
  chan.requestReceived(b'exec', exec_payload('git-upload-pack demo.git'))
  clock.advance(0)
  proto, _, _, _, transport = port.spawned[0]
  proto.errReceived(b'e' * 64)
  assert transport.producing == ['pause']


def test_process_attached_to_full_window_starts_paused(user, conn, port, clock):
  chan = GatewayChannel(remoteWindow=0, remoteMaxPacket=512, conn=conn, avatar=user)
  chan.requestReceived(b'exec', exec_payload('git-upload-pack demo.git'))
  chan.write(b'banner')
  clock.advance(0)
  assert port.spawned[0][4].producing == ['pause']
