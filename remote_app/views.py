import base64
import binascii
import functools
import hmac
import json
import logging

from django.conf import settings
from django.db import transaction
from django.http import Http404, HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from py_sync.diff import diff_trees, lookup_path
from py_sync.errors import InvalidReferenceError, NotFoundError, SyncError
from py_sync.history import HistoryGraph
from py_sync.objects import algorithm_for, find_dangling, pack_object, unpack_object
from py_sync.refs import branch_ref, check_ref_name

from .helpers import DatabaseObjectStore, commit_to_json, diff_to_json, store_for, tree_to_json
from .models import Reference, Repository

logger = logging.getLogger(__name__)

DEFAULT_REF = "refs/heads/main"


def _authorized(request: HttpRequest) -> bool:
    credentials = getattr(settings, 'PY_SYNC_CREDENTIALS', None)
    if not credentials:
        return True
    scheme, _, value = request.META.get('HTTP_AUTHORIZATION', '').partition(' ')
    if scheme.lower() != 'basic':
        return False
    try:
        identity, _, secret = base64.b64decode(value).decode().partition(':')
    except (binascii.Error, UnicodeDecodeError):
        return False
    expected = credentials.get(identity)
    return expected is not None and hmac.compare_digest(expected, secret)


def _unauthorized() -> JsonResponse:
    response = JsonResponse({"status": "unauthorized"}, status=401)
    response['WWW-Authenticate'] = 'Basic realm="py_sync"'
    return response


def require_credentials(view):
    """Refuse the view with 401 unless the request carries valid credentials."""
    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        if not _authorized(request):
            return _unauthorized()
        return view(request, *args, **kwargs)
    return wrapper


def _rejected(message: str, status: int = 400, reason: str = 'other') -> JsonResponse:
    return JsonResponse({"status": "rejected", "reason": reason, "message": message}, status=status)


@csrf_exempt
def push_objects(request: HttpRequest, repo_name: str) -> JsonResponse:
    if request.method != 'POST':
        return JsonResponse({'status': "online"})
    if not _authorized(request):
        return _unauthorized()
    try:
        data = json.loads(request.body)
        ref_name = check_ref_name(data.get('ref', DEFAULT_REF))
        new_hash = data['head'].lower()
        algorithm = algorithm_for(new_hash)
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        return _rejected(f"malformed push: {exc}")
    if not ref_name.startswith('refs/heads/'):
        return _rejected(f"can only push branches, not {ref_name}")

    with transaction.atomic():
        repo, _ = Repository.objects.get_or_create(name=repo_name)
        store = DatabaseObjectStore(repo, algorithm)
        ref = Reference.objects.select_for_update().filter(repo=repo, name=ref_name).first()
        current = ref.commit_hash if ref else None
        try:
            received = [unpack_object(store, obj) for obj in data.get('objects', [])]
            missing = find_dangling(store, received)
            if new_hash not in store:
                missing.append(new_hash)
            if missing:
                transaction.set_rollback(True)
                return _rejected(f"missing objects: {', '.join(missing)}")
            store.get_commit(new_hash)
            fast_forward = current is None or HistoryGraph(store).is_ancestor(current, new_hash)
        except SyncError as exc:
            transaction.set_rollback(True)
            return _rejected(str(exc))

        if not fast_forward:
            transaction.set_rollback(True)
            logger.info("rejected non-fast-forward push to %s %s", repo_name, ref_name)
            return _rejected(
                f"{ref_name} is at {current[:7]}, which {new_hash[:7]} does not contain",
                status=409,
                reason='non-fast-forward',
            )
        Reference.objects.update_or_create(repo=repo, name=ref_name, defaults={'commit_hash': new_hash})

    logger.info("%s %s -> %s (%d objects)", repo_name, ref_name, new_hash[:7], len(received))
    return JsonResponse({"status": "pushed", "ref": ref_name, "head": new_hash})


@require_GET
@require_credentials
def list_refs(request: HttpRequest, repo_name: str) -> JsonResponse:
    refs = Reference.objects.filter(repo__name=repo_name).order_by('name')
    return JsonResponse({"refs": dict(refs.values_list('name', 'commit_hash'))})


@csrf_exempt
@require_POST
@require_credentials
def fetch_objects(request: HttpRequest, repo_name: str) -> JsonResponse:
    try:
        data = json.loads(request.body)
        wants = [str(oid).lower() for oid in data.get('wants', [])]
        haves = [str(oid).lower() for oid in data.get('haves', [])]
    except (ValueError, TypeError, AttributeError) as exc:
        return JsonResponse({"status": "error", "message": f"malformed fetch: {exc}"}, status=400)
    repo = get_object_or_404(Repository, name=repo_name)
    if not wants:
        return JsonResponse({"objects": []})
    try:
        store = store_for(repo, wants[0])
        oids = list(HistoryGraph(store).iter_objects(wants, haves))
        objects_data = [pack_object(store, oid) for oid in reversed(oids)]
    except NotFoundError as exc:
        raise Http404(str(exc))
    except InvalidReferenceError as exc:
        return JsonResponse({"status": "error", "message": str(exc)}, status=400)
    return JsonResponse({"objects": objects_data})


@require_credentials
def repo_list(request: HttpRequest) -> JsonResponse:
    repos = Repository.objects.order_by('name').values_list('name', flat=True)
    return JsonResponse({"repos": list(repos)})


def _resolve_commit(repo, commit_sha):
    store = store_for(repo)
    try:
        sha = HistoryGraph(store).resolve(commit_sha)
        return store, sha, store.get_commit(sha)
    except SyncError:
        raise Http404(f"Commit '{commit_sha}' not found")


@require_credentials
def repo_overview(request: HttpRequest, name: str) -> JsonResponse:
    repo = get_object_or_404(Repository, name=name)
    ref = get_object_or_404(Reference, repo=repo, name=DEFAULT_REF)
    store, head_sha, commit = _resolve_commit(repo, ref.commit_hash)
    return JsonResponse({
        "repo": repo.name,
        "head_sha": head_sha,
        "commit": commit_to_json(head_sha, commit),
        "entries": tree_to_json(store.get_tree(commit.tree)),
    })


def _resolve_tree_sha(store, commit, rel_path):
    if not rel_path.strip("/"):
        return commit.tree
    entry = lookup_path(store, commit.tree, rel_path)
    if entry is None or not entry.is_dir:
        raise Http404(f"Directory '{rel_path}' not found")
    return entry.target


@require_credentials
def tree_view(request: HttpRequest, name: str, commit_sha: str, path: str = "") -> JsonResponse:
    repo = get_object_or_404(Repository, name=name)
    store, sha, commit = _resolve_commit(repo, commit_sha)
    tree_sha = _resolve_tree_sha(store, commit, path)
    return JsonResponse({
        "repo": repo.name,
        "commit_sha": sha,
        "path": path,
        "entries": tree_to_json(store.get_tree(tree_sha)),
    })


@require_credentials
def blob_view(request: HttpRequest, name: str, commit_sha: str, path: str) -> JsonResponse:
    repo = get_object_or_404(Repository, name=name)
    store, sha, commit = _resolve_commit(repo, commit_sha)
    entry = lookup_path(store, commit.tree, path)
    if entry is None or entry.is_dir:
        raise Http404("File not found")
    content = store.get_blob(entry.target).data.decode(errors="replace")
    return JsonResponse({
        "repo": repo.name,
        "commit_sha": sha,
        "path": path,
        "sha": entry.target,
        "content": content,
    })


@require_credentials
def commit_list(request: HttpRequest, name: str) -> JsonResponse:
    repo = get_object_or_404(Repository, name=name)
    ref = get_object_or_404(Reference, repo=repo, name=branch_ref(request.GET.get('ref', DEFAULT_REF)))
    store = store_for(repo, ref.commit_hash)
    commits = [commit_to_json(sha, commit) for sha, commit in HistoryGraph(store).ancestors_of(ref.commit_hash)]
    return JsonResponse({"repo": repo.name, "ref": ref.name, "commits": commits})


@require_credentials
def commit_detail(request: HttpRequest, name: str, commit_sha: str) -> JsonResponse:
    repo = get_object_or_404(Repository, name=name)
    store, sha, commit = _resolve_commit(repo, commit_sha)
    parent_tree = store.get_commit(commit.first_parent).tree if commit.first_parent else None
    info = commit_to_json(sha, commit)
    info["changes"] = [diff_to_json(entry) for entry in diff_trees(store, parent_tree, commit.tree)]
    return JsonResponse({"repo": repo.name, "commit": info})
