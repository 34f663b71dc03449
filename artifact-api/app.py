import os
from datetime import datetime, timezone
from typing import Any, Mapping

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import MethodNotAllowed, NotFound

from artifact_keys import derive_key, extract_branch, list_prefix, validate_branch, validate_filename
from artifact_store import FilesystemArtifactStore
from authorization import authorize
from errors import ArtifactApiError, ArtifactNotFound, ConfigError, MissingAuth, MissingBody
from jwks_cache import GITHUB_JWKS_URL, JwksCache
from oidc import TokenVerifier

ENDPOINTS = {
    "PUT /upload?filename=<name>": "Upload artifact (requires GitHub OIDC token)",
    "GET /artifacts?branch=<branch>": "List artifacts for a branch",
    "GET /download?branch=<branch>&filename=<name>": "Download artifact",
    "GET /health": "Health check",
}

ARTIFACT_HEADERS = {
    "X-Artifact-Repository": "repository",
    "X-Artifact-Branch": "branch",
    "X-Artifact-Uploaded-At": "uploaded_at",
    "X-Artifact-Run-Id": "run_id",
}

CORS_METHODS = ["GET", "POST", "PUT", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Authorization", "Content-Type"]

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(CORS_METHODS),
    "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
}


def _optional_int(value: str | None) -> int | None:
    return int(value) if value else None


def load_config() -> dict[str, Any]:
    return {
        "ALLOWED_REPOSITORY": os.environ.get("ALLOWED_REPOSITORY", ""),
        "ARTIFACT_ROOT": os.environ.get("ARTIFACT_ROOT", "/data/artifacts"),
        "DEFAULT_BRANCH": os.environ.get("DEFAULT_BRANCH", "main"),
        "OIDC_AUDIENCE": os.environ.get("OIDC_AUDIENCE") or None,
        "JWKS_URL": GITHUB_JWKS_URL,
        "JWKS_MAX_AGE": float(os.environ.get("JWKS_MAX_AGE", "3600")),
        "JWKS_TIMEOUT": float(os.environ.get("JWKS_TIMEOUT", "5")),
        "MAX_CONTENT_LENGTH": _optional_int(os.environ.get("MAX_UPLOAD_BYTES")),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO"),
    }


def create_app(test_config: Mapping[str, Any] | None = None,
               jwks_cache: JwksCache | None = None,
               store: FilesystemArtifactStore | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if test_config is not None:
        app.config.from_mapping(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])
    logger = app.logger

    allowed_repository = app.config["ALLOWED_REPOSITORY"]
    if not allowed_repository:
        raise ConfigError("ALLOWED_REPOSITORY must be set")

    if jwks_cache is None:
        jwks_cache = JwksCache(app.config["JWKS_URL"],
                               max_age=app.config["JWKS_MAX_AGE"],
                               timeout=app.config["JWKS_TIMEOUT"])
    verifier = TokenVerifier(jwks_cache, audience=app.config["OIDC_AUDIENCE"])
    if store is None:
        store = FilesystemArtifactStore(app.config["ARTIFACT_ROOT"])
    default_branch = app.config["DEFAULT_BRANCH"]

    app.extensions["artifact_store"] = store
    app.extensions["token_verifier"] = verifier

    logger.info(f"Using artifact root: {store.root}")
    logger.info(f"Allowed repository: {allowed_repository}")

    def json_response(body: dict, status: int = 200) -> Response:
        response = jsonify(body)
        response.status_code = status
        return response

    def require_bearer_token() -> str:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            raise MissingAuth()
        token = auth[7:].strip()
        if not token:
            raise MissingAuth("Empty Bearer token")
        return token

    def read_branch() -> str:
        return validate_branch(request.args.get("branch") or default_branch)

    @app.errorhandler(ArtifactApiError)
    def handle_api_error(exc: ArtifactApiError):
        log = logger.error if exc.status >= 500 else logger.warning
        log(f"{request.method} {request.path} -> {exc.status} {exc.kind.value}: {exc.detail or exc.message}")
        return json_response({"error": exc.message}, exc.status)

    @app.errorhandler(NotFound)
    @app.errorhandler(MethodNotAllowed)
    def handle_unknown_route(exc):
        return json_response({"error": "Not found", "endpoints": ENDPOINTS}, 404)

    @app.before_request
    def preflight():
        # any path answers OPTIONS; flask-cors leaves responses that already carry CORS headers alone
        if request.method == "OPTIONS":
            return Response(status=204, headers=PREFLIGHT_HEADERS)

    @app.get("/health")
    def health():
        return json_response({"status": "ok"})

    # ------------------------------------------------------------------
    # /upload endpoint
    # ------------------------------------------------------------------
    @app.put("/upload")
    def upload():
        """
        Accepts the raw artifact as request body and `filename` as query
        parameter. The branch comes from the verified token's ref, never
        from the caller. A second upload to the same branch and filename
        replaces the first.
        """
        token = require_bearer_token()
        claims = verifier.verify(token)
        authorize(claims, allowed_repository)

        filename = validate_filename(request.args.get("filename"))
        branch = validate_branch(extract_branch(claims.ref))
        key = derive_key(branch, filename)

        data = request.get_data()
        if not data:
            raise MissingBody()

        store.put(
            key,
            data,
            request.headers.get("Content-Type") or "application/octet-stream",
            {
                "repository": claims.source_repository,
                "branch": branch,
                "ref": claims.ref,
                "actor": claims.actor,
                "run_id": claims.run_id,
                "run_number": claims.run_number,
                "uploaded_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info(f"Stored {key} ({len(data)} bytes) from {claims.source_repository} "
                    f"run {claims.run_id}/{claims.run_number} by {claims.actor}")

        return json_response({
            "success": True,
            "key": key,
            "message": f"Artifact uploaded successfully to {key}",
        })

    @app.get("/artifacts")
    def list_artifacts():
        branch = read_branch()
        artifacts = [
            {
                "key": entry.key,
                "size": entry.size,
                "uploaded": entry.uploaded_at.isoformat(),
            }
            for entry in store.list(list_prefix(branch))
        ]
        return json_response({"branch": branch, "artifacts": artifacts})

    @app.get("/download")
    def download():
        branch = read_branch()
        filename = validate_filename(request.args.get("filename"))
        key = derive_key(branch, filename)

        artifact = store.get(key)
        if artifact is None:
            raise ArtifactNotFound(f"No object at {key}")

        response = Response(artifact.data, content_type=artifact.content_type)
        response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
        for header, field in ARTIFACT_HEADERS.items():
            response.headers[header] = artifact.metadata.get(field, "")
        return response

    CORS(app,
         resources={r"/*": {"origins": "*"}},
         methods=CORS_METHODS,
         allow_headers=CORS_ALLOW_HEADERS,
         expose_headers=["Content-Disposition", *ARTIFACT_HEADERS],
         send_wildcard=True)

    return app


# For gunicorn: `gunicorn -b 0.0.0.0:8000 app:app`
app = create_app()
