import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Worker',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('external_id', models.CharField(max_length=64, unique=True)),
                ('role', models.CharField(choices=[('rider', 'Rider'), ('errander', 'Errander')], max_length=10)),
                ('full_name', models.CharField(max_length=120)),
                ('phone_number', models.CharField(max_length=20)),
                ('bank_name', models.CharField(blank=True, max_length=100)),
                ('account_number', models.CharField(blank=True, max_length=20)),
                ('identity_number', models.CharField(blank=True, max_length=20)),
                ('photo_file_id', models.CharField(blank=True, max_length=255)),
                ('is_available', models.BooleanField(default=False)),
                ('latitude', models.FloatField(blank=True, null=True)),
                ('longitude', models.FloatField(blank=True, null=True)),
                ('last_location_update', models.DateTimeField(blank=True, null=True)),
                ('rating', models.FloatField(default=0.0)),
                ('rating_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'workers',
                'indexes': [
                    models.Index(fields=['role', 'is_available'], name='workers_role_avail_idx'),
                    models.Index(fields=['latitude', 'longitude'], name='workers_location_idx'),
                ],
            },
        ),
    ]
