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

import os
import sys
import argparse
import errno

from twisted.conch.ssh import keys
from twisted.internet import defer, endpoints
from twisted.logger import (Logger, LogLevel, FilteringLogObserver,
  LogLevelFilterPredicate, globalLogBeginner, textFileLogObserver)

from . import __version__
from .auth import AuthenticationGate, AuthorizedKeysFile
from .commands import Dispatcher
from .config import Config, ConfigError
from .process import ReactorProcessPort
from .provision import RepoProvisioner
from .sandbox import PathSandbox
from .ssh import GatewayFactory, load_host_key

log = Logger()


def get_argument_parser():
  parser = argparse.ArgumentParser(prog='git-gate-server', description='''
    git-gate v{0} - serves Git repositories over SSH'''.format(__version__))
  parser.add_argument('-c', '--config',
    default=os.environ.get('GIT_GATE_CONFIG'),
    help='Python configuration file (default: $GIT_GATE_CONFIG)')
  parser.add_argument('--repos', dest='repository_root',
    help='directory that contains the repositories')
  parser.add_argument('--listen', help='endpoint description, eg. tcp:2222')
  parser.add_argument('--ssh-port', type=int,
    help='shortcut for --listen tcp:<port>')
  parser.add_argument('--ssh-key', dest='host_key', help='SSH host key file')
  parser.add_argument('--authorized-keys', help='authorized keys file')
  parser.add_argument('--log-level', help='minimum level of log messages')
  return parser


def load_config(args):
  config = Config.from_file(args.config) if args.config else Config()
  listen = args.listen
  if not listen and args.ssh_port:
    listen = 'tcp:{}'.format(args.ssh_port)
  config.update({'repository_root': args.repository_root, 'listen': listen,
    'host_key': args.host_key, 'authorized_keys': args.authorized_keys,
    'log_level': args.log_level})
  return config.validate()


def start_logging(level, stream=sys.stderr):
  predicate = LogLevelFilterPredicate(defaultLogLevel=LogLevel.levelWithName(level))
  observer = FilteringLogObserver(textFileLogObserver(stream), [predicate])
  globalLogBeginner.beginLoggingTo([observer], redirectStandardIO=False)


def make_factory(config, host_key, reactor):
  dispatcher = Dispatcher(
    PathSandbox(config.repository_root),
    RepoProvisioner(config.repository_root, config.git, config.hook_scripts()),
    ReactorProcessPort(reactor, config.git_bin_dir))
  checker = AuthenticationGate(AuthorizedKeysFile(config.authorized_keys))
  return GatewayFactory(host_key, dispatcher, checker, reactor)


def main(argv=None):
  parser = get_argument_parser()
  args = parser.parse_args(argv)
  try:
    config = load_config(args)
  except (ConfigError, OSError, SyntaxError) as exc:
    print('error: invalid configuration: {}'.format(exc), file=sys.stderr)
    return errno.EINVAL

  start_logging(config.log_level)
  log.info('git-gate v{version} starting', version=__version__)
  log.info('repositories: {root}', root=config.repository_root)

  try:
    config.ensure_directories()
    host_key = load_host_key(config.host_key)
  except (OSError, keys.BadKeyError) as exc:
    log.critical('can not load host key {filename}: {error}',
      filename=config.host_key, error=str(exc))
    return 1

  from twisted.internet import reactor
  factory = make_factory(config, host_key, reactor)
  status = []

  def listening(port):
    log.info('SSH server listening on {address}', address=port.getHost())

  def failed(failure):
    log.critical('can not listen on {listen}: {error}', listen=config.listen,
      error=failure.getErrorMessage())
    status.append(1)
    reactor.stop()

  def start():
    d = defer.maybeDeferred(
      lambda: endpoints.serverFromString(reactor, config.listen).listen(factory))
    d.addCallbacks(listening, failed)

  reactor.callWhenRunning(start)
  reactor.run()
  return status[0] if status else 0


if __name__ == '__main__':
  sys.exit(main())
