from apkit.models import Person, CryptographicKey

from fedinbox.config import actor_uri, publication_url, settings
from fedinbox.activitypub.keys import load_public_key_pem


def build_actor() -> Person:
    actor_url = actor_uri()

    return Person(
        id=actor_url,
        name=settings.actor_display_name,
        preferredUsername=settings.actor_username,
        summary=settings.actor_summary,
        url=publication_url(),
        inbox=f"{actor_url}/inbox",
        outbox=f"{actor_url}/outbox",
        followers=f"{actor_url}/followers",
        following=f"{actor_url}/following",
        publicKey=CryptographicKey(
            id=f"{actor_url}#main-key",
            owner=actor_url,
            publicKeyPem=load_public_key_pem(),
        ),
        manuallyApprovesFollowers=False,
    )
