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
''' Public key authentication against an OpenSSH style `authorized_keys`
file. The file is read again for every authentication attempt and is
never modified, except that an empty one is created on first use. '''

import base64
import binascii
import collections
import os
import struct

from twisted.conch.error import ValidPublicKey
from twisted.conch.ssh import keys
from twisted.cred.checkers import ICredentialsChecker
from twisted.cred.credentials import ISSHPrivateKey
from twisted.cred.error import UnauthorizedLogin
from twisted.internet import defer
from twisted.logger import Logger
from zope.interface import implementer

log = Logger()

SSH_KEYTYPES = frozenset(['ecdsa-sha2-nistp256', 'ecdsa-sha2-nistp384',
  'ecdsa-sha2-nistp521', 'ssh-ed25519', 'ssh-dss', 'ssh-rsa',
  'sk-ecdsa-sha2-nistp256@openssh.com', 'sk-ssh-ed25519@openssh.com'])

SSH_OPTIONS = frozenset(['agent-forwarding', 'cert-authority', 'command',
  'environment', 'expiry-time', 'from', 'no-agent-forwarding',
  'no-port-forwarding', 'no-pty', 'no-touch-required', 'no-user-rc',
  'no-X11-forwarding', 'permitlisten', 'permitopen', 'port-forwarding',
  'principals', 'pty', 'restrict', 'tunnel', 'user-rc', 'verify-required',
  'X11-forwarding'])

AuthorizedKey = collections.namedtuple('AuthorizedKey', 'options type blob comment')
Identity = collections.namedtuple('Identity', 'username key')


def load_public_key(blob):
  ''' Load the wire format public key *blob*. Raises `keys.BadKeyError`
  for anything that is not a supported public key. '''

  try:
    return keys.Key.fromString(blob, type='blob')
  except (ValueError, struct.error) as exc:
    raise keys.BadKeyError(str(exc))


def tokenize(line):
  ''' Convert *line* into a list of tokens. Supports double-quotes and
  (unchecked) backslash escapes. Options are separated by commas. '''

  DEFAULT, QUOTE, ESCAPE = 0, 1, 2

  tokens = []
  current = ''
  state = DEFAULT

  for char in line:
    if state == DEFAULT:
      if char in ' \t,':
        if current:
          tokens.append(current)
        current = ''
      else:
        current += char
        if char == '"':
          state = QUOTE
    elif state == QUOTE:
      current += char
      if char == '"':
        state = DEFAULT
      elif char == '\\':
        state = ESCAPE
    elif state == ESCAPE:
      current += char
      state = QUOTE

  if current:
    tokens.append(current)
  return tokens


def parse_authorized_key(line):
  ''' Parse a line of an OpenSSH `authorized_keys` file and return an
  `AuthorizedKey` or None if the line is empty or a comment. The *blob*
  is the decoded key material. `ValueError` is raised when the line is
  invalid. '''

  line = line.strip()
  if not line or line.startswith('#'):
    return None

  OPTIONS, BLOB, COMMENT = 0, 1, 2

  state = OPTIONS
  options = {}
  keytype = None
  blob = None
  comment = []

  for token in tokenize(line):
    if state == OPTIONS:
      if token in SSH_KEYTYPES:
        state = BLOB
        keytype = token
      else:
        key, _, value = token.partition('=')
        if key not in SSH_OPTIONS:
          raise ValueError('invalid option {!r}'.format(key))
        options[key] = value
    elif state == BLOB:
      try:
        blob = base64.b64decode(token, validate=True)
      except binascii.Error:
        raise ValueError('invalid key blob')
      state = COMMENT
    elif state == COMMENT:
      comment.append(token)

  if not keytype:
    raise ValueError('no SSH key type parsed')
  if not blob:
    raise ValueError('no SSH key blob parsed')

  return AuthorizedKey(options, keytype, blob, ' '.join(comment))


class KeyStore(object):
  ''' Interface for the set of authorized keys. '''

  def iter_lines(self):
    ''' Yield the records of the store as lines of text. Raises
    `OSError` if the store can not be read. '''

    raise NotImplementedError

  def iter_keys(self):
    ''' Yield `(lineno, AuthorizedKey)` for every valid record. Invalid
    records are skipped with a warning that only mentions the line
    number. '''

    for lineno, line in enumerate(self.iter_lines(), 1):
      try:
        key = parse_authorized_key(line)
      except ValueError as exc:
        log.warn('skipping authorized key on line {lineno}: {error}',
          lineno=lineno, error=str(exc))
        continue
      if key:
        yield lineno, key


class MemoryKeyStore(KeyStore):

  def __init__(self, lines=()):
    super().__init__()
    self.lines = list(lines)

  def iter_lines(self):
    return iter(list(self.lines))


class AuthorizedKeysFile(KeyStore):
  ''' The `authorized_keys` file at *filename*. If it does not exist it
  is created empty with owner-only permissions. '''

  def __init__(self, filename):
    super().__init__()
    self.filename = filename

  def ensure_exists(self):
    if os.path.exists(self.filename):
      return
    dirname = os.path.dirname(self.filename)
    if dirname:
      os.makedirs(dirname, mode=0o700, exist_ok=True)
    log.info('creating empty authorized keys file {filename}',
      filename=self.filename)
    try:
      fd = os.open(self.filename, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
      return
    os.close(fd)

  def iter_lines(self):
    self.ensure_exists()
    with open(self.filename, 'r') as fp:
      for line in fp:
        yield line


@implementer(ICredentialsChecker)
class AuthenticationGate(object):
  ''' A `twisted.cred` checker that accepts a public key if and only if
  its serialized form equals one of the records in *store*. The avatar
  ID produced on success is an `Identity`.

  Only key material is compared. The claimed user name is logged but
  does not influence the decision. '''

  credentialInterfaces = (ISSHPrivateKey,)

  def __init__(self, store):
    super().__init__()
    self.store = store

  def find_key(self, blob):
    ''' Returns the first `AuthorizedKey` in the store that matches the
    public key *blob* or None. Raises `OSError` if the store can not be
    read. '''

    presented = load_public_key(blob).blob()
    for lineno, record in self.store.iter_keys():
      try:
        candidate = load_public_key(record.blob).blob()
      except keys.BadKeyError as exc:
        log.warn('skipping authorized key on line {lineno}: {error}',
          lineno=lineno, error=str(exc))
        continue
      if candidate == presented:
        return record
    return None

  def authenticate(self, credentials):
    ''' Check *credentials* synchronously. Returns an `Identity`, raises
    `ValidPublicKey` if the key is authorized but the client did not yet
    send a signature, or `UnauthorizedLogin`. '''

    username = credentials.username
    if isinstance(username, bytes):
      username = username.decode('utf8', 'replace')

    try:
      record = self.find_key(credentials.blob)
    except keys.BadKeyError:
      log.warn('rejected unparseable public key for {username}',
        username=username)
      raise UnauthorizedLogin('invalid public key')
    except OSError as exc:
      log.error('rejected {username}: can not read authorized keys: {error}',
        username=username, error=str(exc))
      raise UnauthorizedLogin('authorized keys unavailable')

    if record is None:
      log.warn('rejected public key for {username}', username=username)
      raise UnauthorizedLogin('public key not authorized')

    if not credentials.signature:
      raise ValidPublicKey()

    key = load_public_key(credentials.blob)
    if not key.verify(credentials.signature, credentials.sigData):
      log.warn('rejected invalid signature for {username}', username=username)
      raise UnauthorizedLogin('invalid signature')

    log.info('accepted public key for {username}', username=username)
    return Identity(username, record)

  def requestAvatarId(self, credentials):
    return defer.maybeDeferred(self.authenticate, credentials)
