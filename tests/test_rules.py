import pytest

from practice_messaging.utils.rules import Rule, RuleTable, classify_topic, contains_any, normalize_text


class TestTopicClassification:
    @pytest.mark.parametrize("text, topic", [
        ("Preciso de ajuda urgente", "Urgente"),
        ("URGENTE: prazo amanhã", "Urgente"),
        ("Segue o documento assinado", "Documentos"),
        ("Quando é a audiência?", "Audiências"),
        ("Qual o prazo do recurso?", "Audiências"),
        ("Gostaria de marcar uma consulta", "Consulta Jurídica"),
        ("Tenho uma dúvida sobre o contrato", "Consulta Jurídica"),
        ("Bom dia!", "Geral"),
        ("", "Geral"),
    ])
    def test_keywords(self, text, topic):
        assert classify_topic(text) == topic

    def test_first_matching_rule_wins(self):
        assert classify_topic("documento urgente") == "Urgente"


class TestRuleTable:
    def test_default_when_nothing_matches(self):
        table = RuleTable([Rule(lambda n: n > 10, "big")], default="small")
        assert table.classify(3) == "small"
        assert table.classify(30) == "big"

    def test_multiple_arguments(self):
        table = RuleTable([Rule(lambda a, b: a == b, "same")], default="different")
        assert table.classify(1, 1) == "same"
        assert table.classify(1, 2) == "different"

    def test_normalization_strips_accents(self):
        assert normalize_text("Audiência DÚVIDA") == "audiencia duvida"
        assert contains_any("audiencia")("Próxima AUDIÊNCIA")
