"""Unit tests for shutter_dispatch._router."""

import pytest

import shutter_dispatch
from shutter_dispatch import CommandRouter, LinkConfig, SerialLink, ShutterAction


def make_links(*configs: LinkConfig) -> dict[str, SerialLink]:
    return {lc.id: SerialLink(lc) for lc in configs}


def test_resolve_default_layout():
    links = make_links(*shutter_dispatch.DEFAULT_CONFIG.links)
    router = CommandRouter(links)

    seen = set()
    for dest in range(15):
        route = router.resolve(dest)
        assert route == router.resolve(dest)  # stable
        assert (route.link.id, route.local_address) not in seen  # unique
        seen.add((route.link.id, route.local_address))

    assert router.resolve(6) == (links["OG"], 6)
    assert router.resolve(8) == (links["EG"], 0)
    assert router.resolve(14) == (links["EG"], 6)


@pytest.mark.parametrize("dest", [-1, 15, 16, 99])
def test_resolve_unknown(dest):
    router = CommandRouter(make_links(*shutter_dispatch.DEFAULT_CONFIG.links))
    assert dest not in router
    with pytest.raises(shutter_dispatch.UnknownDestinationError, match=str(dest)):
        router.resolve(dest)


def test_resolve_explicit_and_index_addressing():
    router = CommandRouter(
        make_links(
            LinkConfig(id="A", port="p1", destinations={30: 7, 31: 2}),
            LinkConfig(id="B", port="p2", destinations=[9, 3], addressing="index"),
        )
    )
    assert router.resolve(30).local_address == 7
    assert router.resolve(31).local_address == 2
    assert router.resolve(9).local_address == 0
    assert router.resolve(3).local_address == 1
    assert [e.destination for e in router.entries()] == [3, 9, 30, 31]
    assert router.entries()[0] == shutter_dispatch.RouteEntry(3, "B", 1)


def test_router_rejects_shared_destination():
    links = make_links(
        LinkConfig(id="A", port="p1", destinations=[0, 1]),
        LinkConfig(id="B", port="p2", destinations=[1, 2]),
    )
    with pytest.raises(ValueError, match="Destination 1"):
        CommandRouter(links)


def test_link_lookup():
    links = make_links(*shutter_dispatch.DEFAULT_CONFIG.links)
    router = CommandRouter(links)
    assert router.link("EG") is links["EG"]
    with pytest.raises(shutter_dispatch.UnknownDestinationError):
        router.link("DG")


def test_encode_action():
    assert shutter_dispatch.encode_action(6, ShutterAction.OPEN) == b"O6:1\n"
    assert shutter_dispatch.encode_action(0, ShutterAction.CLOSE) == b"O0:0\n"
    assert shutter_dispatch.encode_action(12, 1) == b"O12:1\n"


def test_encode_raw():
    assert shutter_dispatch.encode_raw("O6:1") == b"O6:1\n"
    assert shutter_dispatch.encode_raw("O6:1\n") == b"O6:1\n"
    with pytest.raises(shutter_dispatch.MalformedTriggerError):
        shutter_dispatch.encode_raw("Ö6:1")
