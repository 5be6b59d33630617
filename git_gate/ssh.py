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
''' The SSH side of the gateway, built on Twisted Conch.

Each authenticated connection gets a `GatewayUser` avatar which only
knows the `session` channel type. A `GatewayChannel` accepts a single
`exec` request and hands the command line to the `Dispatcher`; shells,
ptys, subsystems and environment requests are refused by Conch because
the channel does not implement them. '''

import os
import struct

from twisted.conch.avatar import ConchUser
from twisted.conch.interfaces import IConchUser
from twisted.conch.ssh import channel, factory, keys
from twisted.cred.portal import IRealm, Portal
from twisted.internet import error
from twisted.logger import Logger
from zope.interface import implementer

from .commands import MalformedRequest, parse_exec_payload

log = Logger()

HOST_KEY_BITS = 4096

# Session states.
OPENED = 'opened'
DISPATCHING = 'dispatching'
COMPLETED = 'completed'
REJECTED = 'rejected'


class GatewayChannel(channel.SSHChannel):
  ''' A session channel that runs exactly one command. Data received
  before the command's process was started is buffered and delivered to
  it once it is attached. The process is paused while the client's
  window is exhausted, so its output is never queued up in memory. '''

  name = b'session'

  def __init__(self, *args, **kwargs):
    super().__init__(*args, **kwargs)
    self.state = OPENED
    self.process = None
    self.pending = []
    self.pending_eof = False

  @property
  def username(self):
    return self.avatar.identity.username

  def request_exec(self, data):
    if self.state != OPENED:
      log.warn('{username} sent a second command, closing session',
        username=self.username)
      self.state = REJECTED
      self.loseConnection()
      return 0

    try:
      line = parse_exec_payload(data)
    except MalformedRequest as exc:
      log.warn('malformed exec request from {username}: {error}',
        username=self.username, error=str(exc))
      self.state = REJECTED
      self.loseConnection()
      return 0

    self.state = DISPATCHING
    # Dispatch after the reply to this request was sent.
    self.avatar.reactor.callLater(0, self._dispatch, line)
    return 1

  def _dispatch(self, line):
    if self.state != DISPATCHING:
      return
    d = self.avatar.dispatcher.dispatch(line, self, self.avatar.identity)
    d.addCallback(self._finish)
    d.addErrback(lambda failure: log.failure('session failed', failure))

  def _finish(self, status):
    if self.state != DISPATCHING:
      return
    self.state = COMPLETED
    self.conn.sendRequest(self, b'exit-status', struct.pack('>L', status & 0xffffffff))
    self.loseConnection()

  def attach_process(self, process):
    self.process = process
    for data in self.pending:
      process.write(data)
    self.pending = []
    if self.pending_eof:
      process.closeStdin()
    if not self.areWriting:
      process.pauseProducing()

  def stopWriting(self):
    if self.process is not None:
      self.process.pauseProducing()

  def startWriting(self):
    if self.process is not None:
      self.process.resumeProducing()

  def write_stderr(self, data):
    self.writeExtended(1, data)

  def dataReceived(self, data):
    if self.process is not None:
      self.process.write(data)
    else:
      self.pending.append(data)

  def eofReceived(self):
    if self.process is not None:
      self.process.closeStdin()
    else:
      self.pending_eof = True

  def closed(self):
    if self.state == DISPATCHING:
      log.info('session of {username} closed before the command completed',
        username=self.username)
      self.state = REJECTED
    self._kill()

  def _kill(self):
    if self.process is None:
      return
    try:
      self.process.signalProcess('KILL')
    except error.ProcessExitedAlready:
      pass
    else:
      log.info('killed process of {username}', username=self.username)


class GatewayUser(ConchUser):
  ''' The avatar of an authenticated connection. '''

  def __init__(self, identity, dispatcher, reactor=None):
    super().__init__()
    if reactor is None:
      from twisted.internet import reactor
    self.identity = identity
    self.dispatcher = dispatcher
    self.reactor = reactor
    self.channelLookup[b'session'] = GatewayChannel

  def logout(self):
    log.info('{username} disconnected', username=self.identity.username)


@implementer(IRealm)
class GatewayRealm(object):

  def __init__(self, dispatcher, reactor=None):
    super().__init__()
    self.dispatcher = dispatcher
    self.reactor = reactor

  def requestAvatar(self, avatarId, mind, *interfaces):
    if IConchUser not in interfaces:
      raise NotImplementedError('no supported interface')
    user = GatewayUser(avatarId, self.dispatcher, self.reactor)
    return IConchUser, user, user.logout


class GatewayFactory(factory.SSHFactory):
  ''' Serves SSH connections with the *host_key* and authenticates them
  with *checker* (an `auth.AuthenticationGate`). '''

  def __init__(self, host_key, dispatcher, checker, reactor=None):
    self.publicKeys = {host_key.sshType(): host_key.public()}
    self.privateKeys = {host_key.sshType(): host_key}
    self.portal = Portal(GatewayRealm(dispatcher, reactor), [checker])


def generate_host_key(filename, bits=HOST_KEY_BITS):
  ''' Generate a new RSA host key and write it to *filename*, readable
  only by its owner. '''

  from cryptography.hazmat.primitives.asymmetric import rsa

  dirname = os.path.dirname(filename)
  if dirname:
    os.makedirs(dirname, mode=0o700, exist_ok=True)
  private = rsa.generate_private_key(public_exponent=65537, key_size=bits)
  data = keys.Key(private).toString('openssh')
  fd = os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
  with os.fdopen(fd, 'wb') as fp:
    fp.write(data)


def load_host_key(filename, bits=HOST_KEY_BITS):
  ''' Load the private host key from *filename*, generating it first if
  the file does not exist. Raises `OSError` or `keys.BadKeyError`. '''

  if not os.path.exists(filename):
    log.info('generating new SSH host key at {filename}', filename=filename)
    generate_host_key(filename, bits)
  key = keys.Key.fromFile(filename)
  if key.isPublic():
    raise keys.BadKeyError('{} is not a private key'.format(filename))
  return key
