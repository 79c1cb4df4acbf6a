"""Tests for the per-device render cycle"""

from conftest import token_reply
from lib.color_codec import decode_ascii
from lib.model_catalog import ModelProfile, resolve_profile
from lib.renderer import (
    LIGHTING_MODE_FORCED, DeviceRenderer, RenderSettings, StaticPixelSource,
)
from lib.yeelight_api import KEEPALIVE_INTERVAL, SessionPhase, YeelightSession

STRIP = ModelProfile(
    model_id="strip3",
    display_name="Three LED Strip",
    supports_per_led=True,
    led_positions=((0, 0), (1, 0), (2, 0)),
    led_names=("LED 1", "LED 2", "LED 3"),
)
SINGLE = resolve_profile("unknown")


def make_renderer(transports, clock, profile=SINGLE, color=(255, 0, 0),
                  led_count=1, settings=None):
    session = YeelightSession("10.0.0.7", profile=profile,
                              transport_factory=transports, clock=clock)
    pixels = StaticPixelSource(color, led_count=led_count)
    return DeviceRenderer(session, pixels, settings, clock=clock)


def bring_up(renderer, transports):
    """Token, initialization; returns with everything sent so far cleared"""
    renderer.render()
    transports.last.queue(token_reply(1))
    renderer.render()
    transports.last.sent.clear()


def enter_direct_mode(renderer, transports):
    renderer.render()
    request_id = transports.last.sent_json()[-1]["id"]
    transports.last.queue({"id": request_id, "result": ["ok"]})
    transports.last.sent.clear()


class TestStartup:
    def test_first_tick_requests_token(self, transports, clock):
        renderer = make_renderer(transports, clock)
        renderer.render()
        assert transports.last.methods() == ["udp_sess_new"]

    def test_token_request_is_throttled(self, transports, clock):
        renderer = make_renderer(transports, clock)
        renderer.render()
        clock.advance(0.25)
        renderer.render()
        assert transports.last.methods() == ["udp_sess_new"]

        clock.advance(0.25)
        renderer.render()
        assert transports.last.methods() == ["udp_sess_new", "udp_sess_new"]

    def test_tick_after_token_initializes_device(self, transports, clock):
        renderer = make_renderer(transports, clock)
        renderer.render()
        transports.last.queue(token_reply(1))
        renderer.render()

        assert transports.last.methods() == [
            "udp_sess_new", "udp_sess_keep_alive", "set_power", "set_bright",
        ]
        assert renderer.session.is_initialized

    def test_colors_start_on_the_following_tick(self, transports, clock):
        renderer = make_renderer(transports, clock)
        bring_up(renderer, transports)
        renderer.render()

        packet = transports.last.sent_json()[-1]
        assert packet["method"] == "set_rgb"
        assert packet["params"][0] == 0xFF0100


class TestSingleZone:
    def test_unchanged_color_is_not_resent(self, transports, clock):
        renderer = make_renderer(transports, clock, color=(0, 0, 255))
        bring_up(renderer, transports)
        renderer.render()
        renderer.render()
        assert transports.last.methods() == ["set_rgb"]

    def test_forced_mode_ignores_pixel_source(self, transports, clock):
        settings = RenderSettings(lighting_mode=LIGHTING_MODE_FORCED, forced_color="#00ff00")
        renderer = make_renderer(transports, clock, settings=settings)
        bring_up(renderer, transports)
        renderer.render()
        assert transports.last.sent_json()[-1]["params"][0] == 0x00FF00

    def test_override_color_wins(self, transports, clock):
        settings = RenderSettings(lighting_mode=LIGHTING_MODE_FORCED, forced_color="#00ff00")
        renderer = make_renderer(transports, clock, settings=settings)
        bring_up(renderer, transports)
        renderer.render("#000000")

        packet = transports.last.sent_json()[-1]
        assert packet["method"] == "set_bright"
        assert packet["params"][0] == 1

    def test_keepalive_when_idle(self, transports, clock):
        renderer = make_renderer(transports, clock)
        bring_up(renderer, transports)
        renderer.render()
        transports.last.sent.clear()

        clock.advance(KEEPALIVE_INTERVAL)
        renderer.render()
        assert transports.last.methods() == ["udp_sess_keep_alive"]


class TestPerLed:
    def test_layout_device_is_per_led(self, transports, clock):
        assert make_renderer(transports, clock, profile=STRIP).is_per_led()
        assert not make_renderer(transports, clock).is_per_led()

    def test_direct_mode_then_frame(self, transports, clock):
        """Token, init, direct mode request, then a 3-LED frame"""
        renderer = make_renderer(transports, clock, profile=STRIP)
        renderer.render()
        transports.last.queue(token_reply(1))
        renderer.render()

        renderer.render()
        assert transports.last.methods()[-1] == "activate_fx_mode"
        assert renderer.session.phase is SessionPhase.ENTERING_DIRECT_MODE

        request_id = transports.last.sent_json()[-1]["id"]
        transports.last.queue({"id": request_id, "result": ["ok"]})
        renderer.render()

        packet = transports.last.sent_json()[-1]
        assert packet["method"] == "update_leds"
        frame = packet["params"][0]
        assert len(frame) == 12
        assert frame == "/wEA" * 3
        assert [decode_ascii(frame[i:i + 4]) for i in range(0, 12, 4)] == [0xFF0100] * 3

    def test_unanswered_request_is_retried(self, transports, clock):
        renderer = make_renderer(transports, clock, profile=STRIP)
        bring_up(renderer, transports)

        renderer.render()
        renderer.render()
        assert transports.last.methods() == ["activate_fx_mode", "activate_fx_mode"]

    def test_led_override(self, transports, clock):
        renderer = make_renderer(transports, clock, profile=STRIP, color=(0, 0, 0))
        renderer.pixel_source.set_led_color(1, 0, (255, 255, 255))
        bring_up(renderer, transports)
        enter_direct_mode(renderer, transports)
        renderer.render()

        assert transports.last.sent_json()[-1]["params"] == ["AAAA////AAAA"]


class TestComponents:
    def _frame(self, renderer, transports):
        bring_up(renderer, transports)
        enter_direct_mode(renderer, transports)
        renderer.render()
        return transports.last.sent_json()[-1]["params"][0]

    def test_channel_colors_are_sent(self, transports, clock):
        renderer = make_renderer(transports, clock, profile=resolve_profile("CubeLite"),
                                 color=(0, 0, 255), led_count=5)
        frame = self._frame(renderer, transports)
        assert len(frame) == 5 * 4

    def test_empty_channel_uses_default_count(self, transports, clock):
        renderer = make_renderer(transports, clock, profile=resolve_profile("Chameleon2"),
                                 led_count=0)
        frame = self._frame(renderer, transports)
        assert len(frame) == 60 * 4

    def test_channel_is_clamped_to_limit(self, transports, clock):
        renderer = make_renderer(transports, clock, profile=resolve_profile("CubeLite"),
                                 led_count=500)
        frame = self._frame(renderer, transports)
        assert len(frame) == 100 * 4


class TestShutdown:
    def test_shutdown_shows_shutdown_color(self, transports, clock):
        settings = RenderSettings(shutdown_color="#0000ff")
        renderer = make_renderer(transports, clock, settings=settings)
        bring_up(renderer, transports)
        renderer.render()
        transports.last.sent.clear()

        renderer.shutdown(system_suspending=False)

        assert transports.last.sent_json()[-1]["params"][0] == 0x0000FF
        assert renderer.session.has_token
        assert renderer.session.state.last_color is None

    def test_suspend_blacks_out_and_drops_session(self, transports, clock):
        renderer = make_renderer(transports, clock)
        bring_up(renderer, transports)
        renderer.render()
        transport = transports.last
        transport.sent.clear()

        renderer.shutdown(system_suspending=True)

        assert transport.methods() == ["set_bright"]
        assert transport.closed
        assert not renderer.session.has_token

    def test_black_shutdown_keeps_dimmed_flag(self, transports, clock):
        """After a black shutdown the next color restores brightness first"""
        settings = RenderSettings(shutdown_color="#000000")
        renderer = make_renderer(transports, clock, settings=settings)
        bring_up(renderer, transports)
        renderer.render()

        renderer.shutdown(system_suspending=False)
        assert renderer.session.state.light_off
        transports.last.sent.clear()

        renderer.render()
        packets = transports.last.sent_json()
        assert [p["method"] for p in packets] == ["set_bright", "set_rgb"]
        assert packets[0]["params"][0] == 100


class TestKeepaliveWithoutColors:
    def test_keepalive_checked_when_no_colors_sent(self, transports, clock, monkeypatch):
        """A tick that sends no colors still keeps the session alive"""
        renderer = make_renderer(transports, clock, profile=STRIP)
        bring_up(renderer, transports)
        monkeypatch.setattr(renderer, "send_colors", lambda override_color=None: False)

        clock.advance(KEEPALIVE_INTERVAL + 1)
        renderer.render()
        assert transports.last.methods() == ["udp_sess_keep_alive"]
