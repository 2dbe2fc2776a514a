"""
Read-only demo playlist: "Notable Samples".

Classic funk and soul tracks annotated with the timestamps where they
were sampled in hip-hop. The playlist is loaded through the regular
import flow: the tracks come from the curated Spotify playlist when a
Spotify adapter is available (falling back to a bundled track list),
then the provider is overridden to "demo". That marker makes the
playlist read-only and keeps it out of the recent-playlists list.
"""

from playlist_notes.adapters.base import AdapterResult, ImportOptions, PlaylistAdapter
from playlist_notes.core.exceptions import AdapterError
from playlist_notes.core.logger import get_logger
from playlist_notes.state.models import READ_ONLY_PROVIDER, Note, Track


logger = get_logger(__name__)

DEMO_PLAYLIST_ID = "demo-notable-samples"
DEMO_PLAYLIST_URL = "https://open.spotify.com/playlist/3sX5G9KAfZG0DRQnCfIxd8?si=6c96e5754c3643e8"
DEMO_PLAYLIST_TITLE = "Notable Samples"
DEMO_DEVICE_ID = "demo"

# Used when the curated playlist cannot be fetched
DEMO_TRACKS = (
    Track("20VuO95A8RxUPlShnfYArW", "I Got The.. - 2006 Remaster", "Labi Siffre"),
    Track("7gh2v4IHnxdiwSgA6xluhe", "Through the Fire", "Chaka Khan"),
    Track("0u1URCwVrREjrQpQ6D1YQD", "Today", "Tom Scott, The California Dreamers"),
    Track("30qGwfY1Vuc4Xbdswn3cjF", "Rubber Band", "The Trammps"),
    Track(
        "6DVOThiin61bmeIwf6fzGx",
        "Don't Say Goodnight (It's Time for Love), Pts. 1 & 2",
        "The Isley Brothers",
    ),
    Track("1kSxm4vU26W5xSUdnPUkyB", "Yearning For Your Love", "The Gap Band"),
    Track("5GmfIhuF4LsPJxg9Z2FAIl", "You've Got the Makings of a Lover", "The Festivals"),
    Track("6mmi0wu2uGDWKeDx4ufLEj", "Heaven & Hell", "El Michels Affair"),
    Track("1HibhNhwk2tljwC4BGGLXV", "I Can't Help It", "Michael Jackson"),
    Track("1tP2zymw1lurXGGw0rc7uR", "Ain't No Woman (Like the One I've Got)", "Four Tops"),
)

# track id -> (note id, body, timestampMs, timestampEndMs, createdAt)
_DEMO_NOTES: dict[str, list[tuple[str, str, int | None, int | None, int]]] = {
    "20VuO95A8RxUPlShnfYArW": [
        ("demo-note-1a",
         'is sampled in "My Name Is", the hit single off Eminem\'s The Slim Shady LP.',
         130000, 180000, 1765843551460),
        ("demo-note-1b",
         'is also sampled in Jay Z\'s "Streets is Watching" off In My Lifetime, Vol.1',
         24000, 40000, 1765843563066),
    ],
    "7gh2v4IHnxdiwSgA6xluhe": [
        ("demo-note-2a",
         'sampled in Kanye West\'s solo breakout hit "Through the Wire".',
         191000, 242000, 1765843820314),
        ("demo-note-2b",
         "This song is known for launching Kanye's career as the lead single off The College Dropout.",
         None, None, 1765843828889),
    ],
    "0u1URCwVrREjrQpQ6D1YQD": [
        ("demo-note-3a",
         'chops in this section were beautifully crafted into "They Reminisce Over YOU '
         '(T.R.O.Y) by Pete Rock & CL Smooth.',
         55000, 98000, 1765843836293),
        ("demo-note-3b", "Listen for the iconic horns!", None, None, 1765843843782),
    ],
    "30qGwfY1Vuc4Xbdswn3cjF": [
        ("demo-note-4a", 'sampled in "Hate it or Love it" by The Game ft. 50 Cent.',
         123000, None, 1765843849995),
        ("demo-note-4b", 'sampled by J Dilla in "Dilla Says Go"', 0, 10000, 1765843867378),
        ("demo-note-4c", "Check out how each song sampled the original track!",
         None, None, 1765843876677),
    ],
    "6DVOThiin61bmeIwf6fzGx": [
        ("demo-note-5a",
         '"So Far to Go" by J Dilla feat Common & D\'Angelo (RIP) uses a lovely chop from '
         "this section that I've always loved.",
         40000, None, 1765843890934),
        ("demo-note-5b",
         'J Dilla returns to this sample for his song "Bye." utilized more of the melody '
         "but keeping the original soul.",
         300000, None, 1765843971419),
        ("demo-note-5c", "See if you can hear the difference in how the sample was used.",
         None, None, 1765843977084),
    ],
    "1kSxm4vU26W5xSUdnPUkyB": [
        ("demo-note-6",
         'Nas\' infamous track "Life\'s a Bitch" feat AZ and Olu Dara loops this chop.',
         22000, None, 1765843982149),
    ],
    "5GmfIhuF4LsPJxg9Z2FAIl": [
        ("demo-note-7",
         'the intro of this song is sampled on "BBO (Bad Bitches Only) by Migos feat 21 Savage.',
         1000, None, 1765844042636),
    ],
    "6mmi0wu2uGDWKeDx4ufLEj": [
        ("demo-note-8a", "Used in both a classic and modern hip hop track",
         None, None, 1765844049777),
        ("demo-note-8b",
         '"Wavybone" off AT.LONG.LAST.A$AP and "Heaven & Hell" by Raekwon feat. Ghostface Killah',
         0, 10000, 1765844056514),
    ],
    "1HibhNhwk2tljwC4BGGLXV": [
        ("demo-note-9a", 'sampled by De La Soul in the song "Breakadawn"', 0, 15000, 1765844074220),
        ("demo-note-9b",
         'The lyrics of this sample also appear in "Sexy" by Mary J Blige and Jadakiss.',
         None, None, 1765844079498),
    ],
    "1tP2zymw1lurXGGw0rc7uR": [
        ("demo-note-10a",
         'sampled by Big Pun feat. Fat Joe on the track "Still not a Player"',
         0, 10000, 1765844216648),
        ("demo-note-10b",
         'This Big Pun song and this sample were also used and referenced in "The Way" by '
         "Ariana Grande feat. Mac Miller (RIP).",
         None, None, 1765844220913),
    ],
}

DEMO_TAGS_BY_TRACK: dict[str, tuple[str, ...]] = {
    "20VuO95A8RxUPlShnfYArW": ("bass", "loop"),
    "7gh2v4IHnxdiwSgA6xluhe": ("bass", "drums", "vocal"),
    "0u1URCwVrREjrQpQ6D1YQD": ("bass", "drums", "horns"),
    "30qGwfY1Vuc4Xbdswn3cjF": ("bass", "drums", "loop"),
    "1kSxm4vU26W5xSUdnPUkyB": ("bass", "drums"),
    "1tP2zymw1lurXGGw0rc7uR": ("bass", "drums", "melodic", "strings"),
    "6mmi0wu2uGDWKeDx4ufLEj": ("bass", "drums"),
    "1HibhNhwk2tljwC4BGGLXV": ("bass", "vocal"),
}


def is_demo_playlist_id(playlist_id: str | None) -> bool:
    return playlist_id == DEMO_PLAYLIST_ID


def demo_notes_by_track() -> dict[str, tuple[Note, ...]]:
    """Pre-authored demo notes as Note objects."""
    return {
        track_id: tuple(
            Note(
                id=note_id,
                track_id=track_id,
                body=body,
                timestamp_ms=start,
                timestamp_end_ms=end,
                created_at=created_at,
                device_id=DEMO_DEVICE_ID,
            )
            for note_id, body, start, end, created_at in notes
        )
        for track_id, notes in _DEMO_NOTES.items()
    }


class DemoAdapter(PlaylistAdapter):
    """
    Load the demo playlist through a source adapter and mark it read-only.
    
    Args:
        source: Adapter able to import DEMO_PLAYLIST_URL (normally the
                Spotify adapter). None means always use DEMO_TRACKS.
    """
    
    provider = READ_ONLY_PROVIDER
    read_only = True
    
    def __init__(self, source: PlaylistAdapter | None = None) -> None:
        self._source = source
    
    def matches(self, url: str) -> bool:
        return url == DEMO_PLAYLIST_URL or is_demo_playlist_id(url)
    
    def _fetch_tracks(self, options: ImportOptions) -> tuple[Track, ...]:
        if self._source is None:
            return DEMO_TRACKS
        
        try:
            result = self._source.import_playlist(ImportOptions(
                url=DEMO_PLAYLIST_URL,
                page_size=options.page_size,
                cancel_event=options.cancel_event,
            ))
        except AdapterError as e:
            logger.info(f"Using bundled demo tracks ({e.message})")
            return DEMO_TRACKS
        
        return result.tracks or DEMO_TRACKS
    
    def import_playlist(self, options: ImportOptions) -> AdapterResult:
        # The demo is a single page
        tracks = () if options.cursor is not None else self._fetch_tracks(options)
        options.raise_if_cancelled()
        
        track_ids = {track.id for track in tracks}
        notes = {k: v for k, v in demo_notes_by_track().items() if k in track_ids}
        tags = {k: v for k, v in DEMO_TAGS_BY_TRACK.items() if k in track_ids}
        
        return AdapterResult(
            provider=self.provider,
            playlist_id=DEMO_PLAYLIST_ID,
            title=DEMO_PLAYLIST_TITLE,
            source_url=DEMO_PLAYLIST_URL,
            tracks=tuple(tracks),
            cursor=None,
            has_more=False,
            notes_by_track=notes,
            tags_by_track=tags,
        )
