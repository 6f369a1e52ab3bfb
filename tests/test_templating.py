"""Tests for message template rendering."""

from mechhub.templating import (
    build_order_context,
    expand_aliases,
    render_html,
    render_template,
    whatsapp_link,
)


class TestRenderTemplate:
    """Tests for render_template."""

    def test_replaces_bracket_and_brace_tokens(self):
        result = render_template("Hola [apodo], tu {vehiculo} está listo", {"apodo": "Juancho", "vehiculo": "Ford Fiesta"})
        assert result == "Hola Juancho, tu Ford Fiesta está listo"

    def test_tokens_are_case_insensitive(self):
        assert render_template("[APODO] / {Taller}", {"apodo": "Ana", "taller": "Taller Sur"}) == "Ana / Taller Sur"

    def test_english_key_fills_spanish_token(self):
        assert render_template("Gracias por visitar [taller]", {"workshop": "Taller Norte"}) == "Gracias por visitar Taller Norte"

    def test_spanish_key_fills_english_token(self):
        assert render_template("Hi [nickname]", {"apodo": "Pepe"}) == "Hi Pepe"

    def test_unknown_tokens_are_kept(self):
        assert render_template("Hola [apodo] [desconocido]", {"apodo": "Ana"}) == "Hola Ana [desconocido]"

    def test_values_are_not_substituted_again(self):
        result = render_template("[apodo] - [taller]", {"apodo": "[taller]", "taller": "Taller Sur"})
        assert result == "[taller] - Taller Sur"

    def test_none_value_renders_empty(self):
        assert render_template("Turno: [turno_fecha].", {"turno_fecha": None}) == "Turno: ."

    def test_empty_content(self):
        assert render_template(None, {"apodo": "Ana"}) == ""
        assert render_template("", {"apodo": "Ana"}) == ""


class TestExpandAliases:
    """Tests for expand_aliases."""

    def test_fills_both_sides(self):
        expanded = expand_aliases({"Workshop": "Taller", "repuesto": "Filtro"})
        assert expanded["workshop"] == "Taller"
        assert expanded["taller"] == "Taller"
        assert expanded["part"] == "Filtro"

    def test_explicit_value_wins_over_alias(self):
        expanded = expand_aliases({"user": "admin", "usuario": "Ana"})
        assert expanded["user"] == "admin"
        assert expanded["usuario"] == "Ana"


class TestRenderHtml:
    """Tests for render_html."""

    def test_escapes_content_and_values(self):
        result = render_html("<b>[apodo]</b>", {"apodo": "<script>"})
        assert "&lt;b&gt;&lt;script&gt;&lt;/b&gt;" in result

    def test_link_becomes_anchor(self):
        result = render_html("Ver: [link]", {"link": "https://taller.test/o/abc"})
        assert '<a href="https://taller.test/o/abc">https://taller.test/o/abc</a>' in result

    def test_newlines_become_breaks(self):
        assert "uno<br>dos" in render_html("uno\ndos", {})


class TestWhatsappLink:
    """Tests for whatsapp_link."""

    def test_strips_non_digits_and_quotes_message(self):
        assert whatsapp_link("+54 9 11-2233", "Hola Ana") == "https://wa.me/549112233?text=Hola%20Ana"

    def test_no_phone(self):
        assert whatsapp_link(None, "Hola") is None
        assert whatsapp_link("---", "Hola") is None


class TestBuildOrderContext:
    """Tests for build_order_context."""

    def test_context_for_order(self, db, make_order):
        order = make_order(items=(("Cambio de aceite", 100.0, 50.0), ("Filtro de aire", 20.0, 30.0)))
        context = build_order_context(db, order, "demo", user_name="Ana")

        assert context["apodo"] == "Juancho"
        assert context["vehiculo"] == "Ford Fiesta"
        assert context["taller"] == "Taller Demo"
        assert context["servicios"] == "Cambio de aceite, Filtro de aire"
        assert context["total"] == "200.00"
        assert context["usuario"] == "Ana"
        assert context["link"].endswith(f"/demo/o/{order.share_token}")
