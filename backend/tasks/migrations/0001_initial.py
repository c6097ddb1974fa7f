import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Task',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(help_text='Task title', max_length=255)),
                ('description', models.TextField(blank=True, default='', help_text='Optional notes')),
                ('tags', models.JSONField(blank=True, default=list, help_text='Freeform tags')),
                ('start_at', models.DateTimeField(help_text='Scheduled start')),
                ('deadline', models.DateTimeField(help_text='Due by')),
                ('priority', models.CharField(choices=[('low', 'Low'), ('medium', 'Medium'), ('high', 'High'), ('critical', 'Critical')], default='medium', max_length=10)),
                ('category', models.CharField(choices=[('personal', 'Personal'), ('work', 'Work'), ('health', 'Health'), ('finance', 'Finance'), ('education', 'Education'), ('shopping', 'Shopping'), ('travel', 'Travel'), ('other', 'Other')], default='personal', max_length=20)),
                ('completed', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('sort_score', models.FloatField(default=0.0, editable=False)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tasks', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['owner', 'completed'], name='tasks_owner_completed_idx')],
            },
        ),
    ]
