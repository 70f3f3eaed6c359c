from io import BytesIO

import pandas as pd
import pytest

from campal.app import create_app
from campal.exceptions import DataAccessException
from campal.repositories import InMemoryRepository
from campal.reports import CHECKIN_HEADERS

from conftest import ORGANIZER_PASSWORD


def page(response):
    return response.get_data(as_text=True)


class TestPublicPages:

    def test_index(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "FORTES NA PALAVRA" in page(response)

    def test_register_form_lists_districts_and_churches(self, client):
        response = client.get("/inscricao")
        assert response.status_code == 200
        assert "IPITINGA" in page(response)
        assert "Igreja Central" in page(response)

    def test_register_success_redirects_to_ticket(self, client, repositories):
        response = client.post("/inscricao", data={
            "full_name": "Davi Rocha",
            "birth_date": "10/03/1995",
            "district_id": "d1",
            "church_id": "c1",
        })

        assert response.status_code == 302
        row = repositories["registrations"].find_one("full_name", "Davi Rocha")
        assert row["payment_status"] == "pending"
        assert f"/ingresso/{row['checkin_token']}" in response.headers["Location"]
        assert "novo=1" in response.headers["Location"]

        ticket = client.get(response.headers["Location"])
        assert "Inscrição realizada com sucesso! Protocolo: " + row["checkin_token"][:8].upper() in page(ticket)
        assert "Inscrição Concluída!" in page(ticket)

    def test_register_invalid_rerenders_with_errors(self, client, repositories):
        response = client.post("/inscricao", data={"full_name": "D", "birth_date": "99/99/1999"})

        assert response.status_code == 400
        assert "Nome deve ter pelo menos 2 caracteres" in page(response)
        assert "Data inválida" in page(response)
        assert "Distrito é obrigatório" in page(response)
        assert len(repositories["registrations"].select()) == 3

    def test_ticket(self, client):
        response = client.get("/ingresso/tok-ana")
        assert response.status_code == 200
        assert "Ana Souza" in page(response)
        assert "R$ 10,00" in page(response)

    def test_free_ticket(self, client):
        assert "Gratuito" in page(client.get("/ingresso/tok-bruno"))

    def test_unknown_ticket_is_404(self, client):
        response = client.get("/ingresso/nope")
        assert response.status_code == 404
        assert "QR Code inválido ou expirado" in page(response)

    def test_ticket_qrcode(self, client):
        response = client.get("/ingresso/tok-ana/qrcode.png")
        assert response.status_code == 200
        assert response.mimetype == "image/png"
        assert response.data.startswith(b"\x89PNG")

    def test_api_churches(self, client):
        response = client.get("/api/igrejas?district_id=d1")
        assert [church["id"] for church in response.get_json()] == ["c1", "c2"]
        assert len(client.get("/api/igrejas").get_json()) == 3


class TestManagement:

    def test_lists_registrations_and_stats(self, client):
        response = client.get("/gerenciar")
        assert response.status_code == 200
        for name in ("Ana Souza", "Bruno Lima", "Carla Dias"):
            assert name in page(response)

    def test_filters(self, client):
        response = client.get("/gerenciar?payment_status=paid")
        assert "Carla Dias" in page(response)
        assert "Ana Souza" not in page(response)

    def test_confirm_payment(self, client, repositories):
        response = client.post("/gerenciar/pagamento/r1", data={
            "action": "confirm", "method": "pix", "password": ORGANIZER_PASSWORD,
        }, follow_redirects=True)

        assert "Status atualizado: pagamento confirmado." in page(response)
        row = repositories["registrations"].find_one("id", "r1")
        assert (row["payment_status"], row["payment_method"]) == ("paid", "pix")

    def test_wrong_password_changes_nothing(self, client, repositories):
        response = client.post("/gerenciar/pagamento/r1", data={
            "action": "confirm", "method": "pix", "password": "errada",
        }, follow_redirects=True)

        assert "Senha incorreta." in page(response)
        assert repositories["registrations"].find_one("id", "r1")["payment_status"] == "pending"

    def test_revert_payment(self, client, repositories):
        response = client.post("/gerenciar/pagamento/r3", data={
            "action": "revert", "password": ORGANIZER_PASSWORD,
        }, follow_redirects=True)

        assert "Status atualizado: pagamento marcado como pendente." in page(response)
        row = repositories["registrations"].find_one("id", "r3")
        assert (row["payment_status"], row["payment_method"]) == ("pending", None)

    def test_free_registration_payment_is_refused(self, client, repositories):
        response = client.post("/gerenciar/pagamento/r2", data={
            "action": "confirm", "method": "dinheiro", "password": ORGANIZER_PASSWORD,
        }, follow_redirects=True)

        assert "Erro ao atualizar status" in page(response)
        assert repositories["registrations"].find_one("id", "r2")["payment_status"] == "pending"

    def test_payment_for_unknown_registration_is_404(self, client):
        response = client.post("/gerenciar/pagamento/missing", data={
            "action": "confirm", "method": "pix", "password": ORGANIZER_PASSWORD,
        })
        assert response.status_code == 404

    def test_payment_redirects_to_next(self, client):
        response = client.post("/gerenciar/pagamento/r1", data={
            "action": "confirm", "method": "pix", "password": ORGANIZER_PASSWORD,
            "next": "/gerenciar?payment_status=pending",
        })
        assert response.headers["Location"].endswith("/gerenciar?payment_status=pending")

    @pytest.mark.parametrize("next_url", [
        "//evil.example/phish", "/\\evil.example", "https://evil.example/", "gerenciar",
    ])
    def test_payment_ignores_offsite_next(self, client, next_url):
        response = client.post("/gerenciar/pagamento/r1", data={
            "action": "confirm", "method": "pix", "password": ORGANIZER_PASSWORD,
            "next": next_url,
        })
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/gerenciar")
        assert "evil.example" not in response.headers["Location"]

    def test_general_report_download(self, client):
        response = client.get("/gerenciar/relatorio?type=general")

        assert response.status_code == 200
        assert response.mimetype == "application/pdf"
        assert response.data.startswith(b"%PDF")
        assert "campal-2025-relatorio-geral-" in response.headers["Content-Disposition"]

    def test_district_report_download(self, client):
        response = client.get("/gerenciar/relatorio?type=district&selected_id=d1")
        assert "campal-2025-distrito-ipitinga-" in response.headers["Content-Disposition"]

    @pytest.mark.parametrize("query", [
        "type=district",
        "type=weekly",
        "type=district&selected_id=c1",
        "type=church&selected_id=d1",
    ])
    def test_invalid_report_request_is_400(self, client, query):
        assert client.get(f"/gerenciar/relatorio?{query}").status_code == 400


class TestCheckin:

    def test_scanner_page(self, client):
        response = client.get("/checkin")
        assert response.status_code == 200
        assert "html5-qrcode" in page(response)

    def test_lookup_shows_participant(self, client):
        response = client.post("/checkin", data={"token": "tok-ana"})
        assert "Ana Souza" in page(response)
        assert "Confirmar Presença" in page(response)

    def test_lookup_unknown_token(self, client):
        response = client.post("/checkin", data={"token": "nope"})
        assert "QR Code inválido ou expirado" in page(response)

    def test_lookup_already_checked_in(self, client):
        response = client.post("/checkin", data={"token": "tok-carla"})
        assert "Check-in já realizado" in page(response)
        assert "26/09/2025 19:30:00" in page(response)

    def test_confirm_and_confirm_again(self, client, repositories):
        response = client.post("/checkin/r1/confirmar", follow_redirects=True)
        assert "Check-in realizado com sucesso!" in page(response)
        assert repositories["registrations"].find_one("id", "r1")["checkin_status"] is True

        response = client.post("/checkin/r1/confirmar", follow_redirects=True)
        assert "participante já registrado" in page(response)

    def test_revert(self, client, repositories):
        response = client.post("/checkin/r3/desfazer", follow_redirects=True)
        assert "Check-in desfeito." in page(response)
        assert repositories["registrations"].find_one("id", "r3")["checkin_status"] is False

    def test_report_page(self, client):
        response = client.get("/checkin/relatorio")
        assert response.status_code == 200
        assert "Presentes" in page(response)

    def test_excel_download(self, client):
        response = client.get("/checkin/relatorio.xlsx")

        assert "checkin-report.xlsx" in response.headers["Content-Disposition"]
        frame = pd.read_excel(BytesIO(response.data), sheet_name="Check-ins")
        assert list(frame.columns) == CHECKIN_HEADERS
        assert list(frame["Status"]) == ["Ausente", "Ausente", "Presente"]

    def test_pdf_download(self, client):
        response = client.get("/checkin/relatorio.pdf")
        assert "checkin-report.pdf" in response.headers["Content-Disposition"]
        assert response.data.startswith(b"%PDF")


class TestAdmin:

    def test_add_district(self, client, repositories):
        response = client.post("/admin", data={"kind": "district", "name": "NORTE"}, follow_redirects=True)
        assert "Distrito adicionado com sucesso!" in page(response)
        assert repositories["districts"].find_one("name", "NORTE")

    def test_duplicate_district(self, client):
        response = client.post("/admin", data={"kind": "district", "name": "IPITINGA"})
        assert response.status_code == 400
        assert "já cadastrado" in page(response)

    def test_add_church(self, client, repositories):
        response = client.post("/admin", data={"kind": "church", "name": "Igreja Nova", "district_id": "d2"},
                               follow_redirects=True)
        assert "Igreja adicionada com sucesso!" in page(response)
        assert repositories["churches"].find_one("name", "Igreja Nova")["district_id"] == "d2"

    def test_church_without_district(self, client):
        response = client.post("/admin", data={"kind": "church", "name": "Igreja Nova"})
        assert response.status_code == 400
        assert "Distrito é obrigatório" in page(response)


class BrokenRepository(InMemoryRepository):
    def select(self, filters=None, order_by=None, descending=False):
        raise DataAccessException("select", f"{self.table}: timeout")


def test_database_errors_render_error_page(repositories):
    repositories["registrations"] = BrokenRepository("registrations")
    app = create_app({"TESTING": True, "ORGANIZER_PASSWORD": ORGANIZER_PASSWORD, "SEED_ON_START": False},
                     repositories)

    response = app.app.test_client().get("/gerenciar")

    assert response.status_code == 500
    assert "Erro ao acessar os dados" in page(response)


def test_seed_district_command(repositories):
    app = create_app({"TESTING": True, "ORGANIZER_PASSWORD": ORGANIZER_PASSWORD, "SEED_ON_START": False}, {
        "districts": InMemoryRepository("districts"),
        "churches": InMemoryRepository("churches"),
        "registrations": repositories["registrations"],
    })
    runner = app.app.test_cli_runner()

    result = runner.invoke(args=["seed-district"])
    assert result.exit_code == 0
    assert "16 novas igrejas de 16" in result.output

    result = runner.invoke(args=["seed-district"])
    assert "0 novas igrejas de 16" in result.output


def test_missing_organizer_password_fails_fast(repositories, monkeypatch):
    monkeypatch.delenv("ORGANIZER_PASSWORD", raising=False)
    with pytest.raises(ValueError):
        create_app({"TESTING": True, "ORGANIZER_PASSWORD": None}, repositories)
