from pathlib import Path


class OutputNamer:
    """Builds output paths next to the source file without clobbering anything."""

    def crf_path(self, source: Path, crf: int, extension: str) -> Path:
        return self._final_path(source, f"-CRF{crf}", extension)

    def target_size_path(self, source: Path, target_mb: int, extension: str) -> Path:
        return self._final_path(source, f"-Target{target_mb}MB", extension)

    def split_pattern(self, source: Path) -> Path:
        """printf-style segment pattern understood by ffmpeg's segment muxer.

        If segments from an earlier split already exist, " (n)" goes on the
        stem so the new run never overwrites or mixes with them.
        """
        return source.with_name(f"{self._segment_stem(source)}-Part%03d{source.suffix}")

    def first_segment(self, source: Path) -> Path:
        return source.with_name(f"{self._segment_stem(source)}-Part000{source.suffix}")

    def unique_path(self, path: Path) -> Path:
        """Append " (n)" to the stem until the name is free."""
        if not path.exists():
            return path
        count = 1
        candidate = path
        while candidate.exists():
            candidate = path.with_name(f"{path.stem} ({count}){path.suffix}")
            count += 1
        return candidate

    def _segment_stem(self, source: Path) -> str:
        stem = source.stem
        count = 1
        while source.with_name(f"{stem}-Part000{source.suffix}").exists():
            stem = f"{source.stem} ({count})"
            count += 1
        return stem

    def _final_path(self, source: Path, suffix: str, extension: str) -> Path:
        if not extension.startswith("."):
            extension = f".{extension}"
        return self.unique_path(source.with_name(f"{source.stem}{suffix}{extension}"))
