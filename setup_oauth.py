"""One-time Spotify login from the terminal.

Prints the authorization URL, waits for the URL Spotify redirected to and
stores the resulting token pair in the bot's storage file. Other keys in the
file are left alone; a running bot reads the new pair on its next start, or use
/spotify-login from Discord instead.
"""

import asyncio
import os
import sys

from dotenv import load_dotenv

from jukebox.errors import JukeboxError
from jukebox.spotify import build_oauth
from jukebox.storage import JsonStore
from jukebox.token_manager import TokenManager


def main() -> None:
    load_dotenv()
    client_id = os.getenv("SPOTIFY_CLIENT_ID")
    client_secret = os.getenv("SPOTIFY_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise SystemExit("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET must be provided!")
    redirect_uri = os.getenv("SPOTIFY_REDIRECT_URI", "http://localhost:8888/callback")
    store = JsonStore(os.getenv("STORAGE_PATH", "/data/jukebox.json"))

    tokens = TokenManager(build_oauth(client_id, client_secret, redirect_uri), store)
    print(f"\n  Open in your browser:  {tokens.begin_authorization()}\n")
    print("After allowing access you are redirected to a page that may not load.")
    redirected = input("Paste the full URL from the address bar: ")

    try:
        asyncio.run(tokens.complete_authorization(redirected))
    except JukeboxError as exc:
        print(f"  Error from Spotify: {exc}", file=sys.stderr)
        raise SystemExit(1)

    print(f"\nAuthorized! Token saved to {store.path}. Restart the bot to use it.")


if __name__ == "__main__":
    main()
