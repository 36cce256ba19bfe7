import argparse
import logging
import os
import sys
import textwrap
import time

from .config import DEFAULT_REMOTE, DEFAULT_REMOTE_URL
from .errors import SyncError
from .repository import Repository
from .sync import SyncController
from .transport import Accepted, Credentials, Rejected

COMMANDS = ['init', 'commit', 'push', 'fetch', 'log', 'diff', 'show', 'changes', 'branches', 'remote']


def build_parser():
    parser = argparse.ArgumentParser(prog='py_sync', description="py_sync command")
    parser.add_argument('command', choices=COMMANDS, help='py_sync commands')
    parser.add_argument('-p', '--path', type=str, help='Tracked file path for commit and show')
    parser.add_argument('-m', '--message', type=str, help='Commit message')
    parser.add_argument('-c', '--content', type=str, help='New file content for commit')
    parser.add_argument('-f', '--file', type=str, help='Read new file content for commit from this file')
    parser.add_argument('-r', '--remote', type=str, default=DEFAULT_REMOTE, help='Remote name')
    parser.add_argument('-u', '--url', type=str, help='Remote URL for remote and branches')
    parser.add_argument('-b', '--branch', type=str, help='Branch name')
    parser.add_argument('--rev', type=str, default='HEAD', help='Revision for log, diff, show and changes')
    parser.add_argument('--renames', action='store_true', help='Detect renames in diff output')
    parser.add_argument('--hash', dest='hash_algorithm', default='sha1', choices=['sha1', 'sha256'],
                        help='Hash algorithm for init')
    parser.add_argument('-v', '--verbose', action='count', default=0)
    return parser


def print_changes(changes):
    for entry in changes:
        print(f"  {entry}")


def print_log(history):
    for oid, commit in history:
        when = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(commit.timestamp))
        print(f"commit {oid}")
        print(f"Author: {commit.author}")
        print(f"Date:   {when}\n")
        for line in commit.message.splitlines():
            print(f"    {line}")
        print("")


def run(args, parser):
    if args.command == 'init':
        repo = Repository.init('.', hash_algorithm=args.hash_algorithm, branch=args.branch or 'main')
        print(f"Initialized empty py_sync repository in {repo.git_dir}")
        return 0

    repo = Repository.discover('.')
    controller = SyncController(repo, credentials=Credentials.from_env())

    if args.command == 'remote':
        if not args.url:
            parser.error('remote requires a -u url')
        # a bare repository name means that repository on the default server
        url = args.url if '/' in args.url else f"{DEFAULT_REMOTE_URL}/{args.url}"
        repo.add_remote(args.remote, url)
        print(f"Remote {args.remote} -> {url}")
    elif args.command == 'commit':
        if not args.path or not args.message:
            parser.error('the commit command requires a -p path and a -m message')
        if args.content is not None:
            content = args.content.encode()
        else:
            with open(args.file or os.path.join(repo.root, args.path), 'rb') as f:
                content = f.read()
        commit_id = controller.commit_change(args.path, content, args.message)
        print(f"Committed {commit_id[:7]}: {args.message}")
    elif args.command == 'push':
        outcome = controller.push(args.remote, args.branch)
        if isinstance(outcome, Accepted):
            print(f"Pushed {outcome.head[:7]} to {args.remote} {outcome.ref}")
        elif isinstance(outcome, Rejected):
            print(f"Push rejected ({outcome.reason.value}). Differences between local and remote:")
            print_changes(outcome.conflicts)
            return 1
        else:
            print(f"Push failed: {outcome.message}")
            return 1
    elif args.command == 'fetch':
        for ref, oid in controller.fetch(args.remote).items():
            print(f"{oid[:7]} {ref}")
    elif args.command == 'log':
        if args.branch:
            print_log(controller.remote_history(args.remote, args.branch))
        else:
            print_log(controller.history_of(args.rev))
    elif args.command == 'diff':
        print_changes(controller.diff_against(args.rev, detect_renames=args.renames))
    elif args.command == 'changes':
        for entry in controller.changes_in(args.rev, detect_renames=args.renames):
            print(f"  {entry}")
            if entry.new_path is not None:
                content = controller.content_at(args.rev, entry.new_path)
                print(textwrap.indent(content.decode(errors='replace'), '    '))
    elif args.command == 'show':
        if not args.path:
            parser.error('show requires a -p path')
        sys.stdout.flush()
        sys.stdout.buffer.write(controller.content_at(args.rev, args.path))
    elif args.command == 'branches':
        print("Branches in remote repository:")
        for name in controller.remote_branches(url=args.url, remote=args.remote):
            print(name)
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING - 10 * min(args.verbose, 2),
        format='%(levelname)s %(name)s: %(message)s',
    )
    try:
        return run(args, parser)
    except (SyncError, OSError) as exc:
        parser.exit(1, f"error: {exc}\n")
