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
''' Server side Git hooks that are installed into every repository that
is created through the gateway.

The post-receive hook is the entry point of the pipeline: Git feeds it
one ``<old-rev> <new-rev> <ref-name>`` line per updated ref and it runs
the repository's pipeline script once for every line, in order, as

    sh <repo>/<pipeline_script> <branch> <old-rev> <new-rev>

from inside the repository directory. A failing pipeline is reported on
stderr. Whether it also changes the exit status of the hook depends on
the failure policy, see `render_hooks()`. '''

import os
import re
import stat

HOOK_TEMPLATE_VERSION = 1
PIPELINE_SCRIPT = 'git-gate-ci.sh'

#: Pipeline script names are inserted into the hook as plain text.
SCRIPT_NAME = re.compile(r'[\w.-]+', re.ASCII)

#: Keep the exit status of the hook at 0, no matter what the pipeline does.
POLICY_IGNORE = 'ignore'
#: Exit with status 1 if the pipeline failed for any of the refs.
POLICY_REPORT = 'report'
FAILURE_POLICIES = (POLICY_IGNORE, POLICY_REPORT)

PRE_RECEIVE = '''\
#!/bin/sh
# git-gate pre-receive hook (template version {version})
#
# Called once before any ref is updated, with one
# "<old-rev> <new-rev> <ref-name>" line per ref on stdin.
# Exit non-zero to reject the whole push.

while read oldrev newrev refname; do
  echo "Validating: $refname"
done

exit 0
'''

UPDATE = '''\
#!/bin/sh
# git-gate update hook (template version {version})
#
# Called once per ref as "update <ref-name> <old-rev> <new-rev>".
# Exit non-zero to reject the update of this ref.

refname="$1"
oldrev="$2"
newrev="$3"

exit 0
'''

POST_RECEIVE = '''\
#!/bin/sh
# git-gate post-receive hook (template version {version})
#
# Called once after all refs of a push were updated, with one
# "<old-rev> <new-rev> <ref-name>" line per ref on stdin. Runs the
# pipeline script for every line.

repo=$(cd "${{GIT_DIR:-.}}" && pwd)
pipeline="$repo/{pipeline}"
failed=0

while read oldrev newrev refname; do
  branch=$(echo "$refname" | sed 's|^refs/[^/]*/||')
  if [ -f "$pipeline" ]; then
    echo "Running pipeline for $branch"
    (cd "$repo" && sh "$pipeline" "$branch" "$oldrev" "$newrev" < /dev/null)
    status=$?
    if [ "$status" -ne 0 ]; then
      echo "Pipeline failed for $branch with status $status" >&2
      failed=1
    fi
  fi
done

exit {exit_status}
'''


def render_hooks(pipeline_script=PIPELINE_SCRIPT, failure_policy=POLICY_IGNORE):
  ''' Returns a dictionary that maps hook names, relative to the
  repository directory, to the script text.

  With *failure_policy* `POLICY_IGNORE` the post-receive hook always
  exits with status 0, so a failing pipeline never shows up as an error
  of the push. `POLICY_REPORT` makes it exit with 1 instead.

  *pipeline_script* is a file name made of letters, digits, `_`, `.`
  and `-`; anything else raises `ValueError`. '''

  if failure_policy not in FAILURE_POLICIES:
    raise ValueError('invalid failure policy {!r}'.format(failure_policy))
  if not SCRIPT_NAME.fullmatch(pipeline_script or '') or pipeline_script in ('.', '..'):
    raise ValueError('invalid pipeline script name {!r}'.format(pipeline_script))

  exit_status = '"$failed"' if failure_policy == POLICY_REPORT else '0'
  return {
    'hooks/pre-receive': PRE_RECEIVE.format(version=HOOK_TEMPLATE_VERSION),
    'hooks/update': UPDATE.format(version=HOOK_TEMPLATE_VERSION),
    'hooks/post-receive': POST_RECEIVE.format(version=HOOK_TEMPLATE_VERSION,
      pipeline=pipeline_script, exit_status=exit_status),
  }


def install_hooks(repo_path, hooks):
  ''' Write the *hooks* returned by `render_hooks()` into the repository
  at *repo_path* and make them executable. '''

  mode = stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH
  for name, content in sorted(hooks.items()):
    filename = os.path.join(repo_path, name)
    os.makedirs(os.path.dirname(filename), exist_ok=True)
    with open(filename, 'w') as fp:
      fp.write(content)
    os.chmod(filename, mode)
