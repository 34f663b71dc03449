from errors import RepositoryNotAllowed
from oidc import IdentityClaims


def authorize(claims: IdentityClaims, allowed_repository: str) -> None:
    """Only the single configured repository may publish. Exact match, no patterns."""
    if not allowed_repository or claims.source_repository != allowed_repository:
        raise RepositoryNotAllowed(
            claims.source_repository,
            f"Repository mismatch: expected {allowed_repository}, got {claims.source_repository}",
        )
