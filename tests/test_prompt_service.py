from datetime import datetime, timezone
from types import SimpleNamespace

from concierge.services.prompt_service import RULES, build_system_prompt, format_preferences


class TestBuildSystemPrompt:
    def test_uses_salon_timezone(self, salon):
        # 02:30 UTC on a Tuesday is 23:30 Monday in São Paulo
        now = datetime(2026, 10, 20, 2, 30, tzinfo=timezone.utc)

        prompt = build_system_prompt(salon, now=now)

        assert "segunda-feira, 19/10/2026" in prompt
        assert "Hora atual: 23:30" in prompt

    def test_unknown_timezone_falls_back(self, salon):
        salon.timezone = "Mars/Olympus"

        prompt = build_system_prompt(salon, now=datetime(2026, 10, 20, 12, 0, tzinfo=timezone.utc))

        assert "Hora atual: 09:00" in prompt

    def test_agent_identity_and_rules(self, salon):
        prompt = build_system_prompt(salon)

        assert "Você é Bia" in prompt
        assert "Studio Bella" in prompt
        assert "simpático" in prompt
        assert prompt.endswith(RULES)

    def test_new_customer_without_name(self, salon):
        prompt = build_system_prompt(salon, is_new_customer=True)

        assert "CLIENTE NOVO" in prompt
        assert "Nome desconhecido" in prompt

    def test_returning_customer_with_preferences(self, salon):
        customer = SimpleNamespace(name="Ana", preferences={"favorite_professional": "Carla", "allergies": []})

        prompt = build_system_prompt(salon, customer=customer)

        assert "CLIENTE RECORRENTE" in prompt
        assert "Nome: Ana" in prompt
        assert "Profissional preferido: Carla" in prompt
        assert "Alergias" not in prompt

    def test_knowledge_and_custom_instructions(self, salon):
        salon.settings = {"custom_instructions": "Não atendemos aos domingos."}

        prompt = build_system_prompt(salon, knowledge_context="Estacionamento gratuito.")

        assert "CONTEXTO DO SALÃO:\nEstacionamento gratuito." in prompt
        assert "INSTRUÇÕES DO SALÃO:\nNão atendemos aos domingos." in prompt


class TestFormatPreferences:
    def test_empty(self):
        assert format_preferences({}) == ""
        assert format_preferences({"notes": ""}) == ""

    def test_unknown_key_is_humanized(self):
        assert "- Cor cabelo: castanho" in format_preferences({"cor_cabelo": "castanho"})

    def test_list_values(self):
        assert "manhã, tarde" in format_preferences({"horarios": ["manhã", "tarde"]})
