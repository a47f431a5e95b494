"""
Metadata tagging for produced audio files (mutagen).

Containers:
    .mp3   ID3 v2.3: TIT2, TPE1, TALB, TPE2, TRCK, TPOS, TYER, APIC
    .m4a   MP4 atoms: ©nam, ©ART, ©alb, aART, ©day, trkn, disk, covr
    .flac  Vorbis comments + front-cover Picture block

ID3 v2.3 is used instead of v2.4 because many hardware players (car
stereos, handheld consoles) only read v2.3.

Album art goes through fit_artwork() with the profile's caps. If the cap
cannot be met the file gets no art; tagging still succeeds.

Errors:
    Any other extension         TagError(UNSUPPORTED_CONTAINER)
    mutagen / OS failure        TagError(IO_FAILURE)
"""

from pathlib import Path

import mutagen
from mutagen.flac import FLAC, Picture
from mutagen.id3 import APIC, ID3, ID3NoHeaderError, TALB, TDRC, TIT2, TPE1, TPE2, TPOS, TRCK
from mutagen.mp4 import MP4, MP4Cover

from trackfetch.catalog.models import TrackDescriptor
from trackfetch.core.exceptions import TagError, TagErrorKind
from trackfetch.core.logger import get_logger
from trackfetch.core.profile import OutputProfile
from trackfetch.download.artwork import fit_artwork

logger = get_logger(__name__)


COVER_FRONT = 3  # ID3 / FLAC picture type "Cover (front)"


class Tagger:
    """
    Writes tags in place.

    Stateless; one instance is shared by every worker.
    """

    def tag(
        self,
        path: Path,
        descriptor: TrackDescriptor,
        art_bytes: bytes | None,
        profile: OutputProfile
    ) -> bool:
        """
        Embed descriptor metadata (and art, if it fits) into path.

        Returns:
            True if art was embedded, False if the file has no art.

        Raises:
            TagError: UNSUPPORTED_CONTAINER or IO_FAILURE.
        """
        suffix = path.suffix.lower()
        writers = {
            ".mp3": self._tag_mp3,
            ".m4a": self._tag_mp4,
            ".flac": self._tag_flac,
        }
        writer = writers.get(suffix)
        if writer is None:
            raise TagError(
                TagErrorKind.UNSUPPORTED_CONTAINER,
                f"Cannot tag '{suffix or path.name}' files",
                details={"path": str(path)}
            )

        art = None
        if art_bytes:
            art = fit_artwork(art_bytes, profile.art_max_px, profile.art_max_bytes)

        try:
            writer(path, descriptor, art)
        except (mutagen.MutagenError, OSError) as e:
            raise TagError(
                TagErrorKind.IO_FAILURE,
                f"Failed to write tags to {path.name}: {e}",
                details={"path": str(path), "original_error": str(e)}
            ) from e

        logger.debug(f"Tagged {path.name} (art: {'yes' if art else 'no'})")
        return art is not None

    @staticmethod
    def _tag_mp3(path: Path, descriptor: TrackDescriptor, art: bytes | None) -> None:
        try:
            tags = ID3(path)
        except ID3NoHeaderError:
            tags = ID3()
        tags.clear()

        tags.add(TIT2(encoding=3, text=descriptor.title))
        tags.add(TPE1(encoding=3, text=list(descriptor.artists) or [descriptor.artist]))
        tags.add(TALB(encoding=3, text=descriptor.album))
        tags.add(TPE2(encoding=3, text=descriptor.album_artist or descriptor.artist))
        tags.add(TRCK(encoding=3, text=str(descriptor.track_number)))
        tags.add(TPOS(encoding=3, text=str(descriptor.disc_number)))
        if descriptor.year:
            # Written as TYER by the v2.3 conversion on save
            tags.add(TDRC(encoding=3, text=str(descriptor.year)))

        if art:
            tags.add(APIC(
                encoding=3,
                mime="image/jpeg",
                type=COVER_FRONT,
                desc="Cover",
                data=art
            ))

        tags.save(path, v2_version=3)

    @staticmethod
    def _tag_mp4(path: Path, descriptor: TrackDescriptor, art: bytes | None) -> None:
        audio = MP4(path)
        if audio.tags is None:
            audio.add_tags()

        audio["\xa9nam"] = [descriptor.title]
        audio["\xa9ART"] = [", ".join(descriptor.artists) or descriptor.artist]
        audio["\xa9alb"] = [descriptor.album]
        audio["aART"] = [descriptor.album_artist or descriptor.artist]
        if descriptor.year:
            audio["\xa9day"] = [str(descriptor.year)]
        audio["trkn"] = [(descriptor.track_number, 0)]
        audio["disk"] = [(descriptor.disc_number, 0)]

        if art:
            audio["covr"] = [MP4Cover(art, imageformat=MP4Cover.FORMAT_JPEG)]
        elif "covr" in audio:
            del audio["covr"]

        audio.save()

    @staticmethod
    def _tag_flac(path: Path, descriptor: TrackDescriptor, art: bytes | None) -> None:
        audio = FLAC(path)
        if audio.tags is None:
            audio.add_tags()
        else:
            audio.tags.clear()
        audio.clear_pictures()

        audio["TITLE"] = descriptor.title
        audio["ARTIST"] = list(descriptor.artists) or [descriptor.artist]
        audio["ALBUM"] = descriptor.album
        audio["ALBUMARTIST"] = descriptor.album_artist or descriptor.artist
        audio["TRACKNUMBER"] = str(descriptor.track_number)
        audio["DISCNUMBER"] = str(descriptor.disc_number)
        if descriptor.year:
            audio["DATE"] = str(descriptor.year)
        if descriptor.isrc:
            audio["ISRC"] = descriptor.isrc

        if art:
            picture = Picture()
            picture.type = COVER_FRONT
            picture.mime = "image/jpeg"
            picture.desc = "Cover"
            picture.data = art
            audio.add_picture(picture)

        audio.save()
