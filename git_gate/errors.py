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
''' Errors that are reported back to the client of a session. Every
error carries the exit status that the session terminates with. '''

import errno


class GatewayError(Exception):
  ''' Base class for errors that are recovered per session. The string
  representation of the error is sent to the client. '''

  exit_code = 1

  def __init__(self, message):
    super().__init__(message)
    self.message = message

  def __str__(self):
    return self.message


class UsageError(GatewayError):
  exit_code = errno.EINVAL


class UnknownCommand(GatewayError):
  ''' Raised for a well-formed command line with an unsupported verb. '''

  exit_code = 127

  def __init__(self, command):
    super().__init__('Unknown command: {}'.format(command))
    self.command = command


class SandboxViolation(GatewayError):
  ''' The requested path resolves outside of the repository root. '''

  exit_code = errno.EPERM

  def __init__(self, path):
    super().__init__('Invalid repository path')
    self.path = path


class RepositoryNotFound(GatewayError):
  exit_code = errno.ENOENT

  def __init__(self, name):
    super().__init__('Repository not found: {}'.format(name))
    self.name = name


class InvalidName(GatewayError):
  exit_code = errno.EINVAL

  def __init__(self, name):
    super().__init__('Invalid repository name')
    self.name = name


class AlreadyExists(GatewayError):
  exit_code = errno.EEXIST

  def __init__(self, name):
    super().__init__('Repository already exists: {}'.format(name))
    self.name = name


class ProvisioningFailed(GatewayError):
  exit_code = errno.EIO

  def __init__(self, name, reason):
    super().__init__('Failed to create repository: {}'.format(reason))
    self.name = name
    self.reason = reason
