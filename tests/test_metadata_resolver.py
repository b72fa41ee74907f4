from __future__ import annotations

from datetime import timedelta

import pytest

from core.models import MaintainerrMedia, MediaType, PlexMetadata, ResolveStatus
from services.metadata_resolver import LibraryCache, MetadataResolver, ResolutionError, expand_entries
from tests.helpers import ADDED, FakeMediaServer, collection, movie


def _show(server: FakeMediaServer) -> None:
    server.add(PlexMetadata(
        rating_key=200, title="Severance", media_type=MediaType.SHOW, library_section_id=2,
        library_section_title="TV Shows", location_path="/media/tv/Severance", thumb="/t/200",
    ))
    server.add(PlexMetadata(
        rating_key=201, title="Season 1", media_type=MediaType.SEASON, library_section_id=2,
        library_section_title="TV Shows", parent_rating_key=200, index=1, thumb="/t/201",
    ))
    server.add(PlexMetadata(
        rating_key=202, title="Good News About Hell", media_type=MediaType.EPISODE, library_section_id=2,
        library_section_title="TV Shows", file_path="/media/tv/Severance/Season 1/S01E01.mkv",
        parent_rating_key=201, grandparent_rating_key=200, index=1, parent_index=1, thumb="/t/202",
    ))
    server.children = {200: [201], 201: [202]}


def _resolver(server: FakeMediaServer, **options) -> MetadataResolver:
    return MetadataResolver(server, LibraryCache(server.list_library_locations), **options)


def test_expand_entries_is_pure_and_follows_switches() -> None:
    children = {1: [10, 11], 10: [100], 11: [110, 111]}
    media = [MaintainerrMedia(plex_id=1, add_date=ADDED)]

    flat = expand_entries(MediaType.SHOW, media, lambda k: children.get(k, []), include_seasons=True, include_episodes=True)

    assert [(e.media_id, e.media_type, e.parent_id) for e in flat] == [
        (1, MediaType.SHOW, None),
        (10, MediaType.SEASON, 1),
        (100, MediaType.EPISODE, 10),
        (11, MediaType.SEASON, 1),
        (110, MediaType.EPISODE, 11),
        (111, MediaType.EPISODE, 11),
    ]
    assert all(e.add_date == ADDED for e in flat)
    assert [e.is_child for e in flat] == [False, True, True, True, True, True]

    seasons_only = expand_entries(MediaType.SHOW, media, lambda k: children.get(k, []), include_seasons=True)
    assert [e.media_id for e in seasons_only] == [1, 10, 11]
    assert [e.media_id for e in expand_entries(MediaType.SHOW, media, lambda k: children.get(k, []))] == [1]


def test_season_collection_expands_to_episodes_only() -> None:
    media = [MaintainerrMedia(plex_id=10, add_date=ADDED)]

    flat = expand_entries(MediaType.SEASON, media, lambda k: [100, 101], include_episodes=True)

    assert [(e.media_id, e.media_type) for e in flat] == [(10, MediaType.SEASON), (100, MediaType.EPISODE), (101, MediaType.EPISODE)]


def test_movie_resolves_to_its_folder(server: FakeMediaServer) -> None:
    server.add(movie(100, "Heat", "Heat (1995)", labels=["Overlay"]))

    [item] = _resolver(server, label="Overlay").resolve(collection([100]))

    assert item.library_name == "Movies"
    assert item.library_id == 1
    assert item.relative_path == "Heat (1995)"
    assert item.base_filename == "poster"
    assert item.poster_url == "/library/metadata/100/thumb/1"
    assert item.expiration_date == ADDED + timedelta(days=30)
    assert item.label_exists


def test_label_check_is_off_without_a_label(server: FakeMediaServer) -> None:
    server.add(movie(100, "Heat", "Heat (1995)", labels=["Overlay"]))

    [item] = _resolver(server).resolve(collection([100]))

    assert not item.label_exists


def test_longest_matching_root_wins(server: FakeMediaServer) -> None:
    server.libraries = {1: ["/media/movies", "/media/movies/4k"]}
    server.add(movie(100, "Heat", "4k/Heat (1995)"))

    [item] = _resolver(server).resolve(collection([100]))

    assert item.relative_path == "Heat (1995)"


def test_windows_separators_are_normalised(server: FakeMediaServer) -> None:
    server.libraries = {1: ["D:\\Movies"]}
    meta = movie(100, "Heat", "x")
    meta.file_path = "D:\\Movies\\Crime\\Heat (1995)\\Heat.mkv"
    server.add(meta)

    [item] = _resolver(server).resolve(collection([100]))

    assert item.relative_path == "Crime/Heat (1995)"


def test_season_and_episode_use_show_folder(server: FakeMediaServer) -> None:
    _show(server)

    items = _resolver(server, include_seasons=True, include_episodes=True).resolve(collection([200], type_=MediaType.SHOW))

    assert [(i.media_id, i.base_filename, i.relative_path) for i in items] == [
        (200, "poster", "Severance"),
        (201, "Season01", "Severance"),
        (202, "S01E01", "Severance"),
    ]
    assert items[1].title == "Severance - Season 1"
    assert items[2].title == "Severance - S01E01 - Good News About Hell"
    assert items[2].parent_id == 201 and items[2].is_child


def test_outside_library_is_unresolved_and_failures_are_errors(server: FakeMediaServer) -> None:
    outside = movie(101, "Ronin", "Ronin (1998)")
    outside.file_path = "/elsewhere/Ronin.mkv"
    server.add(outside)
    server.add(movie(100, "Heat", "Heat (1995)"))
    server.failing.add(102)

    outcomes = _resolver(server).resolve_outcomes(collection([100, 101, 102, 103]))

    assert [o.status for o in outcomes] == [
        ResolveStatus.RESOLVED,
        ResolveStatus.UNRESOLVED,
        ResolveStatus.ERROR,
        ResolveStatus.ERROR,
    ]
    assert outcomes[1].item is None and "not under any root" in outcomes[1].reason


def test_movie_in_library_root_is_unresolved(server: FakeMediaServer) -> None:
    meta = movie(100, "Heat", "x")
    meta.file_path = "/media/movies/Heat.mkv"
    server.add(meta)

    [outcome] = _resolver(server).resolve_outcomes(collection([100]))

    assert outcome.status == ResolveStatus.UNRESOLVED


def test_library_locations_are_fetched_once(server: FakeMediaServer) -> None:
    server.add(movie(100, "Heat", "Heat (1995)"))
    server.add(movie(101, "Ronin", "Ronin (1998)"))
    resolver = _resolver(server)

    resolver.resolve(collection([100, 101]))
    resolver.resolve(collection([100]))

    assert server.library_calls == 1


def test_library_cache_failure_is_raised() -> None:
    cache = LibraryCache(lambda: None)

    with pytest.raises(ResolutionError):
        cache.roots_for(1)


def test_unknown_collection_type_resolves_nothing(server: FakeMediaServer) -> None:
    server.add(movie(100, "Heat", "Heat (1995)"))
    odd = collection([100])
    odd.type = 9

    assert _resolver(server).resolve_outcomes(odd) == []
